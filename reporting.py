#!/usr/bin/env python3
"""
Aggregations behind the figures: metadata joins, tissue composition,
AUC comparison and confound diagnostics.
"""
import logging

import numpy as np
import pandas as pd
from scipy.stats import mannwhitneyu
from sklearn.metrics import adjusted_rand_score
from statsmodels.stats.multitest import multipletests

from clustering import NOISE_LABEL
from enrichment import top_enriched_genes


def annotate_clusters(clusters: pd.DataFrame, sample_info: pd.DataFrame) -> pd.DataFrame:
    """Left join of assignments with metadata; the row count never grows."""
    meta = sample_info.drop_duplicates(subset="cell_line")
    meta = meta[[c for c in meta.columns if c not in clusters.columns or c == "cell_line"]]
    out = clusters.merge(meta, on="cell_line", how="left", validate="many_to_one")
    n_missing = int((~out["cell_line"].isin(meta["cell_line"])).sum())
    if n_missing:
        logging.info("%d/%d clustered cell lines have no sample metadata", n_missing, len(out))
    return out


def tissue_composition(annotated: pd.DataFrame, column: str = "lineage") -> pd.DataFrame:
    """Cluster x lineage table of member fractions (rows sum to 1)."""
    counts = pd.crosstab(annotated["cluster"], annotated[column].fillna("unknown"))
    return counts.div(counts.sum(axis=1), axis=0)


def auc_comparison(dep_cv: pd.DataFrame, omics_cv: pd.DataFrame) -> pd.DataFrame:
    """One row per cluster: dependency AUC next to omics AUC."""
    a = dep_cv[["cluster", "n_members", "auc", "auc_std"]].rename(
        columns={"auc": "auc_dependency", "auc_std": "auc_std_dependency"})
    b = omics_cv[["cluster", "auc", "auc_std", "n_features"]].rename(
        columns={"auc": "auc_omics", "auc_std": "auc_std_omics", "n_features": "n_omics_features"})
    out = a.merge(b, on="cluster", how="outer")
    out["auc_gap"] = out["auc_dependency"] - out["auc_omics"]
    return out.sort_values("cluster").reset_index(drop=True)


def harvest_date_bias(annotated: pd.DataFrame, date_col: str = "harvest_date") -> pd.DataFrame:
    """
    Per-cluster harvest date summary with a cluster-vs-rest Mann-Whitney U
    test on date ordinals and BH q-values across clusters.
    """
    cols = ["cluster", "n_dated", "median_date", "min_date", "max_date", "u_stat", "p_value", "q_value"]
    df = annotated[annotated[date_col].notna()].copy()
    if df.empty:
        logging.warning("No harvest dates available; skipping harvest-date bias check")
        return pd.DataFrame(columns=cols)
    df["_ord"] = pd.to_datetime(df[date_col]).map(pd.Timestamp.toordinal)

    rows = []
    for cluster, sub in df.groupby("cluster"):
        rest = df.loc[df["cluster"] != cluster, "_ord"]
        if len(sub) >= 2 and len(rest) >= 2:
            u, p = mannwhitneyu(sub["_ord"], rest, alternative="two-sided")
        else:
            u, p = np.nan, np.nan
        dates = pd.to_datetime(sub[date_col])
        rows.append((cluster, len(sub), dates.median(), dates.min(), dates.max(), u, p))
    out = pd.DataFrame(rows, columns=cols[:-1])
    out["q_value"] = np.nan
    ok = out["p_value"].notna()
    if ok.any():
        out.loc[ok, "q_value"] = multipletests(out.loc[ok, "p_value"], method="fdr_bh")[1]
    flagged = out[out["q_value"] < 0.05]
    if len(flagged):
        logging.warning("Clusters with skewed harvest dates (q<0.05): %s", flagged["cluster"].tolist())
    return out


def cluster_concordance(a: pd.DataFrame, b: pd.DataFrame, names=("graph", "density")) -> tuple:
    """Crosstab of two assignments on shared cell lines, plus adjusted Rand index."""
    m = a.merge(b, on="cell_line", suffixes=(f"_{names[0]}", f"_{names[1]}"), how="inner")
    ca, cb = f"cluster_{names[0]}", f"cluster_{names[1]}"
    ari = adjusted_rand_score(m[ca], m[cb]) if len(m) else np.nan
    logging.info("Concordance %s vs %s: ARI=%.3f on %d cell lines", names[0], names[1], ari, len(m))
    return pd.crosstab(m[ca], m[cb]), float(ari)


def modifier_hits_by_cluster(enrichment: pd.DataFrame, modifier: pd.DataFrame, top_n: int = 25,
                             threshold: float = 1.0) -> pd.DataFrame:
    """
    For each cluster, which of its top-N genes score beyond ``threshold`` (in
    absolute value) in any modifier screen.
    """
    hits = modifier.abs().ge(threshold).any(axis=1)
    hit_genes = set(hits.index[hits])
    rows = []
    for cluster in sorted(enrichment["cluster"].unique()):
        if cluster == NOISE_LABEL:
            continue
        top = top_enriched_genes(enrichment, cluster, n=top_n)
        overlap = [g for g in top if g in hit_genes]
        rows.append((cluster, len(top), len(overlap), ";".join(overlap)))
    return pd.DataFrame(rows, columns=["cluster", "n_top", "n_modifier_hits", "modifier_hits"])


def gene_effect_by_group(effect: pd.DataFrame, annotated: pd.DataFrame, gene: str,
                         group_col: str = "cluster") -> pd.DataFrame:
    """
    Long table (cell_line, group, effect) for one gene, used for density plots.

    ``group_col`` can be any annotation column (cluster, lineage, an
    epigenetic call). Lines without a value land in the "unannotated" group.
    """
    if gene not in effect.columns:
        raise ValueError(f"Gene {gene!r} not in effect matrix")
    if group_col not in annotated.columns:
        raise ValueError(f"Annotation column {group_col!r} not found")
    vals = pd.DataFrame({"cell_line": effect.index.astype(str), "effect": effect[gene].to_numpy()})
    df = annotated[["cell_line", group_col]].merge(vals, on="cell_line", how="inner")
    df[group_col] = df[group_col].astype(object).where(df[group_col].notna(), "unannotated")
    return df.rename(columns={group_col: "group"})
