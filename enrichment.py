#!/usr/bin/env python3
"""
Cluster-defining dependencies.

Descriptive ranking only: per (cluster, gene) median scaled effect among
members and among the rest of the cell lines. No significance test.
"""
import logging

import pandas as pd


def cluster_enrichment(scaled: pd.DataFrame, clusters: pd.DataFrame) -> pd.DataFrame:
    """
    Long table: cluster, gene, median, count, median_rest, delta.

    Cell lines in ``clusters`` but not in ``scaled`` (or vice versa) are
    dropped by the inner join.
    """
    labels = clusters.set_index("cell_line")["cluster"]
    common = scaled.index.astype(str).intersection(labels.index)
    if len(common) < len(labels):
        logging.info("Enrichment: %d/%d assigned cell lines present in the effect matrix", len(common), len(labels))
    mat = scaled.copy()
    mat.index = mat.index.astype(str)
    mat = mat.loc[common]
    lab = labels.loc[common]

    rows = []
    for cluster, members in lab.groupby(lab):
        inside = mat.loc[members.index]
        outside = mat.drop(index=members.index)
        med_in = inside.median(axis=0)
        med_out = outside.median(axis=0) if len(outside) else pd.Series(float("nan"), index=mat.columns)
        rows.append(pd.DataFrame({
            "cluster": cluster,
            "gene": mat.columns,
            "median": med_in.values,
            "count": len(inside),
            "median_rest": med_out.values,
        }))
    if not rows:
        return pd.DataFrame(columns=["cluster", "gene", "median", "count", "median_rest", "delta"])
    out = pd.concat(rows, ignore_index=True)
    out["delta"] = out["median"] - out["median_rest"]
    return out


def top_enriched_genes(enrichment: pd.DataFrame, cluster: str, n: int = 10,
                       direction: str = "negative") -> list:
    """
    Top-n genes for one cluster ranked by median scaled effect.

    direction: "negative" (strongest dependencies first), "positive", or "abs".
    """
    sub = enrichment[enrichment["cluster"] == cluster]
    if direction == "negative":
        sub = sub.sort_values("median", ascending=True)
    elif direction == "positive":
        sub = sub.sort_values("median", ascending=False)
    elif direction == "abs":
        sub = sub.reindex(sub["median"].abs().sort_values(ascending=False).index)
    else:
        raise ValueError(f"direction must be negative, positive or abs; got {direction!r}")
    return sub["gene"].head(n).tolist()


def top_genes_table(enrichment: pd.DataFrame, n: int = 10, direction: str = "negative") -> pd.DataFrame:
    """Top-n genes for every cluster, with rank."""
    rows = []
    for cluster in sorted(enrichment["cluster"].unique()):
        for rank, gene in enumerate(top_enriched_genes(enrichment, cluster, n=n, direction=direction), 1):
            rows.append((cluster, rank, gene))
    top = pd.DataFrame(rows, columns=["cluster", "rank", "gene"])
    return top.merge(enrichment, on=["cluster", "gene"], how="left")
