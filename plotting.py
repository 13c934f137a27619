#!/usr/bin/env python3
"""Figures for embeddings, cluster summaries and confound diagnostics."""
import logging
import os
from datetime import date

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from clustering import NOISE_LABEL

FIGURES_DIR = "figures"


def figure_path(suffix: str, figures_dir: str = FIGURES_DIR, ext: str = "png", today: date | None = None) -> str:
    """<figures_dir>/<YYYY-MM-DD>_<suffix>.<ext>"""
    today = today or date.today()
    return os.path.join(figures_dir, f"{today:%Y-%m-%d}_{suffix}.{ext}")


def save_figure(fig, suffix: str, figures_dir: str = FIGURES_DIR) -> str:
    os.makedirs(figures_dir, exist_ok=True)
    out = figure_path(suffix, figures_dir)
    fig.tight_layout()
    fig.savefig(out, dpi=150)
    plt.close(fig)
    logging.info("Wrote %s", out)
    return out


def plot_embedding(emb: pd.DataFrame, annotation: pd.DataFrame | None = None, color: str | None = None,
                   title: str = "", point_size: float = 8):
    """
    Scatter of UMAP1/UMAP2. ``color`` names a column of ``annotation`` (joined
    on cell_line); numeric columns get a colorbar, anything else a legend.
    """
    df = emb if annotation is None else emb.merge(annotation, on="cell_line", how="left")
    fig, ax = plt.subplots(figsize=(6, 5))
    if color is None:
        ax.scatter(df["UMAP1"], df["UMAP2"], s=point_size, color="#4c78a8", alpha=0.8)
    elif pd.api.types.is_numeric_dtype(df[color]) or pd.api.types.is_datetime64_any_dtype(df[color]):
        vals = df[color]
        if pd.api.types.is_datetime64_any_dtype(vals):
            vals = vals.map(lambda t: t.toordinal() if pd.notna(t) else np.nan)
        sc = ax.scatter(df["UMAP1"], df["UMAP2"], c=vals, s=point_size, cmap="viridis", alpha=0.8)
        fig.colorbar(sc, ax=ax, label=color)
    else:
        cats = df[color].fillna("unknown").astype(str)
        order = cats.value_counts().index.tolist()
        palette = dict(zip(order, sns.color_palette("tab20", len(order))))
        if NOISE_LABEL in palette:
            palette[NOISE_LABEL] = (0.8, 0.8, 0.8)
        for cat in order:
            m = cats == cat
            ax.scatter(df.loc[m, "UMAP1"], df.loc[m, "UMAP2"], s=point_size, color=palette[cat], label=cat, alpha=0.8)
        if len(order) <= 20:
            ax.legend(loc="center left", bbox_to_anchor=(1.0, 0.5), fontsize=7, markerscale=2, frameon=False)
    ax.set_xlabel("UMAP1")
    ax.set_ylabel("UMAP2")
    ax.set_title(title or (color or "embedding"))
    return fig


def plot_gene_highlight(emb: pd.DataFrame, effect: pd.DataFrame, gene: str, point_size: float = 8):
    """Embedding colored by one gene's effect (blue = stronger dependency)."""
    vals = pd.DataFrame({"cell_line": effect.index.astype(str), gene: effect[gene].to_numpy()})
    df = emb.merge(vals, on="cell_line", how="left")
    fig, ax = plt.subplots(figsize=(6, 5))
    lim = np.nanmax(np.abs(df[gene].values)) if df[gene].notna().any() else 1.0
    sc = ax.scatter(df["UMAP1"], df["UMAP2"], c=df[gene], cmap="RdBu", vmin=-lim, vmax=lim, s=point_size)
    fig.colorbar(sc, ax=ax, label=f"{gene} effect")
    ax.set_xlabel("UMAP1")
    ax.set_ylabel("UMAP2")
    ax.set_title(gene)
    return fig


def plot_cluster_auc(comparison: pd.DataFrame):
    """Grouped bars: dependency vs omics cross-validated AUC per cluster."""
    x = np.arange(len(comparison))
    w = 0.4
    fig, ax = plt.subplots(figsize=(max(4, 0.6 * len(comparison) + 2), 3.5))
    ax.bar(x - w / 2, comparison["auc_dependency"], w, yerr=comparison["auc_std_dependency"],
           capsize=3, color="#4c78a8", label="dependency")
    ax.bar(x + w / 2, comparison["auc_omics"], w, yerr=comparison["auc_std_omics"],
           capsize=3, color="#f58518", label="omics (top genes)")
    ax.axhline(0.5, color="black", linestyle="--", linewidth=0.8)
    ax.set_xticks(x)
    ax.set_xticklabels(comparison["cluster"].astype(str))
    ax.set_ylim(0, 1.0)
    ax.set_xlabel("cluster")
    ax.set_ylabel("CV AUC")
    ax.legend(fontsize=8, frameon=False)
    return fig


def plot_tissue_composition(composition: pd.DataFrame, max_lineages: int = 12):
    """Stacked bars of lineage fractions per cluster; rare lineages pooled as 'other'."""
    comp = composition.copy()
    keep = comp.sum(axis=0).sort_values(ascending=False).index[:max_lineages]
    other = comp.drop(columns=keep).sum(axis=1)
    comp = comp[keep]
    if (other > 0).any():
        comp["other"] = other
    fig, ax = plt.subplots(figsize=(max(4, 0.5 * len(comp) + 3), 4))
    comp.plot(kind="bar", stacked=True, ax=ax, color=sns.color_palette("tab20", comp.shape[1]), width=0.8)
    ax.set_xlabel("cluster")
    ax.set_ylabel("fraction of cell lines")
    ax.legend(loc="center left", bbox_to_anchor=(1.0, 0.5), fontsize=7, frameon=False)
    return fig


def plot_gene_effect_density(long: pd.DataFrame, gene: str):
    """KDE of one gene's effect per annotation group (output of reporting.gene_effect_by_group)."""
    fig, ax = plt.subplots(figsize=(5, 3.5))
    groups = long["group"].astype(str)
    sizes = groups.value_counts()
    # kde needs at least two points per group
    plot_df = long[groups.isin(sizes.index[sizes >= 2])].assign(group=lambda d: d["group"].astype(str))
    if plot_df.empty:
        ax.text(0.5, 0.5, "too few cell lines per group", ha="center", va="center", transform=ax.transAxes)
        return fig
    sns.kdeplot(data=plot_df, x="effect", hue="group", common_norm=False, ax=ax, warn_singular=False)
    ax.axvline(0, color="black", linewidth=0.6)
    ax.set_xlabel(f"{gene} gene effect")
    ax.set_title(gene)
    return fig


def plot_harvest_dates(annotated: pd.DataFrame, date_col: str = "harvest_date"):
    """Harvest date distribution per cluster (batch/temporal confound check)."""
    df = annotated[annotated[date_col].notna()].copy()
    fig, ax = plt.subplots(figsize=(max(4, 0.5 * df["cluster"].nunique() + 2), 3.5))
    if df.empty:
        ax.text(0.5, 0.5, "no harvest dates", ha="center", va="center", transform=ax.transAxes)
        return fig
    df["cluster"] = df["cluster"].astype(str)
    df["date_num"] = pd.to_datetime(df[date_col]).map(pd.Timestamp.toordinal)
    order = sorted(df["cluster"].unique())
    sns.boxplot(data=df, x="cluster", y="date_num", order=order, ax=ax, color="#c6dbef", fliersize=0)
    sns.stripplot(data=df, x="cluster", y="date_num", order=order, ax=ax, size=2.5, color="#08519c", alpha=0.6)
    ticks = ax.get_yticks()
    ax.set_yticks(ticks)
    ax.set_yticklabels([date.fromordinal(int(t)).strftime("%Y-%m") if t >= 1 else "" for t in ticks])
    ax.set_ylabel("harvest date")
    return fig
