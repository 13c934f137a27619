#!/usr/bin/env python3
"""
Run Cluster Analysis - one full pass over the Achilles gene-effect data.

Steps:
1. Load gene effect, sample info and omics tables from the data directory
2. Z-score the gene-effect matrix per gene
3. 2D UMAP (plots) and 10D UMAP (density clustering)
4. Cluster cell lines: correlation-graph Louvain and HDBSCAN
5. Per-cluster median effects (cluster-defining dependencies)
6. Cross-validated AUC of cluster membership from dependency vs omics features
7. Figures and confound diagnostics (tissue composition, harvest date, genes)

Outputs:
- <out>/clusters_{graph,density}.csv, enrichment_{graph,density}.csv
- <out>/cv_{graph,density}.csv, harvest_bias_{graph,density}.csv
- <out>/metrics.json
- <figures>/<date>_*.png
"""
import argparse
import json
import logging
import os

import pandas as pd

import clustering
import cross_validation
import embedding
import enrichment
import plotting
import reporting
from depmap_io import (
    COPY_NUMBER_FILE, DATA_DIR, EXPRESSION_FILE, GENE_EFFECT_FILE, MUTATIONS_FILE, SAMPLE_INFO_FILE,
    load_copy_number, load_epigenetic_annotations, load_expression, load_gene_effect,
    load_modifier_screen, load_mutations, load_sample_info, read_exclusions, setup_logging, step,
)
from effect_scaling import scale_effects


def load_inputs(args) -> dict:
    def p(name):
        return os.path.join(args.data_dir, name)

    exclude = read_exclusions(args.exclude) if args.exclude else None

    with step("Load gene effect"):
        effect = load_gene_effect(p(GENE_EFFECT_FILE), exclude=exclude)
    with step("Load sample info"):
        info = load_sample_info(p(SAMPLE_INFO_FILE))
        if args.epigenetic:
            epi = load_epigenetic_annotations(args.epigenetic)
            info = info.merge(epi, on="cell_line", how="left", suffixes=("", "_epi"))
            logging.info("Added %d epigenetic annotation columns", epi.shape[1] - 1)

    omics = {}
    with step("Load omics"):
        loaders = [("expression", EXPRESSION_FILE, load_expression),
                   ("mutation", MUTATIONS_FILE, load_mutations),
                   ("cn", COPY_NUMBER_FILE, load_copy_number)]
        for name, fname, loader in loaders:
            if os.path.exists(p(fname)):
                omics[name] = loader(p(fname))
            else:
                logging.warning("%s not found; %s features unavailable", p(fname), name)

    modifier = None
    if args.modifier_screen:
        with step("Load modifier screen"):
            modifier = load_modifier_screen(args.modifier_screen)
    return {"effect": effect, "info": info, "omics": omics, "modifier": modifier}


def analyze_clusters(tag: str, clusters: pd.DataFrame, scaled: pd.DataFrame, inputs: dict,
                     emb2d: pd.DataFrame, args) -> dict:
    """Enrichment, cross-validation, reports and figures for one clustering."""
    annotated = reporting.annotate_clusters(clusters, inputs["info"])
    clusters.to_csv(os.path.join(args.out, f"clusters_{tag}.csv"), index=False)

    with step(f"Enrichment ({tag})"):
        enr = enrichment.cluster_enrichment(scaled, clusters)
        enr.to_csv(os.path.join(args.out, f"enrichment_{tag}.csv"), index=False)
        top = enrichment.top_genes_table(enr, n=args.top_n)
        top.to_csv(os.path.join(args.out, f"top_genes_{tag}.csv"), index=False)

    with step(f"Cross-validation ({tag})"):
        dep_cv = cross_validation.cross_validate_dependency(
            scaled, clusters, num_boost_round=args.boost_rounds, seed=args.seed, show_progress=args.progress)
        logging.info(cross_validation.summarize_cv(dep_cv))
        if inputs["omics"]:
            omics_cv = cross_validation.cross_validate_omics(
                clusters, enr, inputs["omics"], top_n=args.top_n,
                num_boost_round=args.boost_rounds, seed=args.seed, show_progress=args.progress)
            logging.info(cross_validation.summarize_cv(omics_cv))
        else:
            omics_cv = dep_cv.iloc[0:0].copy()
        comparison = reporting.auc_comparison(dep_cv, omics_cv)
        comparison.to_csv(os.path.join(args.out, f"cv_{tag}.csv"), index=False)

    with step(f"Figures ({tag})"):
        plotting.save_figure(plotting.plot_embedding(emb2d, annotated, color="cluster", title=f"{tag} clusters"),
                             f"umap_{tag}_clusters", args.figures_dir)
        comp = reporting.tissue_composition(annotated)
        plotting.save_figure(plotting.plot_tissue_composition(comp), f"{tag}_tissue_composition", args.figures_dir)
        if len(comparison):
            plotting.save_figure(plotting.plot_cluster_auc(comparison), f"{tag}_cv_auc", args.figures_dir)
        bias = reporting.harvest_date_bias(annotated)
        bias.to_csv(os.path.join(args.out, f"harvest_bias_{tag}.csv"), index=False)
        plotting.save_figure(plotting.plot_harvest_dates(annotated), f"{tag}_harvest_dates", args.figures_dir)
        for gene in args.highlight_genes:
            if gene not in inputs["effect"].columns:
                logging.warning("Highlight gene %s not in gene effect matrix", gene)
                continue
            for col in args.density_by:
                if col not in annotated.columns:
                    logging.warning("No annotation column %s to group %s by", col, gene)
                    continue
                long = reporting.gene_effect_by_group(inputs["effect"], annotated, gene, group_col=col)
                plotting.save_figure(plotting.plot_gene_effect_density(long, gene),
                                     f"{tag}_{gene}_by_{col}_density", args.figures_dir)

    if inputs["modifier"] is not None:
        hits = reporting.modifier_hits_by_cluster(enr, inputs["modifier"], top_n=args.top_n)
        hits.to_csv(os.path.join(args.out, f"modifier_hits_{tag}.csv"), index=False)

    return {
        "n_clusters": int(clusters.loc[clusters["cluster"] != clustering.NOISE_LABEL, "cluster"].nunique()),
        "n_noise": int((clusters["cluster"] == clustering.NOISE_LABEL).sum()),
        "median_auc_dependency": _median_or_none(dep_cv["auc"]),
        "median_auc_omics": _median_or_none(omics_cv["auc"]),
        "n_harvest_skewed": int((bias["q_value"] < 0.05).sum()) if len(bias) else 0,
    }


def _median_or_none(s: pd.Series):
    s = s.dropna()
    return float(s.median()) if len(s) else None


def main():
    ap = argparse.ArgumentParser(
        description="Cluster cell lines by CRISPR dependency and validate clusters against omics"
    )
    ap.add_argument("--data-dir", default=DATA_DIR,
                    help=f"Directory with the DepMap/CCLE CSV files (default: {DATA_DIR})")
    ap.add_argument("--figures-dir", default=plotting.FIGURES_DIR,
                    help=f"Directory for figures (default: {plotting.FIGURES_DIR})")
    ap.add_argument("--out", default="out",
                    help="Output directory for tables (default: out)")
    ap.add_argument("--exclude", default=None,
                    help="Optional file of cell-line ids to drop (one per line)")
    ap.add_argument("--modifier-screen", default=None,
                    help="Optional long modifier-screen CSV (gene,screen,score)")
    ap.add_argument("--epigenetic", default=None,
                    help="Optional epigenetic annotation TSV keyed by DepMap_ID")
    ap.add_argument("--n-neighbors", type=int, default=15,
                    help="UMAP neighbours (default: 15)")
    ap.add_argument("--metric", default="correlation",
                    help="UMAP distance metric (default: correlation)")
    ap.add_argument("--cluster-dims", type=int, default=10,
                    help="Dimensions of the clustering embedding (default: 10)")
    ap.add_argument("--graph-k", type=int, default=10,
                    help="Top-k correlated neighbours per cell line (default: 10)")
    ap.add_argument("--min-cluster-size", type=int, default=10,
                    help="HDBSCAN minimum cluster size (default: 10)")
    ap.add_argument("--top-n", type=int, default=10,
                    help="Top enriched genes per cluster used as omics features (default: 10)")
    ap.add_argument("--boost-rounds", type=int, default=cross_validation.NUM_BOOST_ROUND,
                    help=f"XGBoost rounds (default: {cross_validation.NUM_BOOST_ROUND})")
    ap.add_argument("--seed", type=int, default=42,
                    help="Seed for UMAP, Louvain and CV folds (default: 42)")
    ap.add_argument("--highlight-genes", nargs="*", default=[],
                    help="Genes to plot on the embedding and per cluster")
    ap.add_argument("--density-by", nargs="*", default=["cluster", "lineage"],
                    help="Annotation columns (cluster, sample info, epigenetic) to group highlight-gene densities by")
    ap.add_argument("--color-by", nargs="*", default=["lineage", "harvest_date"],
                    help="Sample info columns to color the 2D embedding by")
    ap.add_argument("-v", "--verbose", action="count", default=1,
                    help="Increase verbosity (-v=INFO, -vv=DEBUG).")
    ap.add_argument("-q", "--quiet", action="store_true", help="Quiet mode (only warnings/errors).")
    ap.add_argument("--log-file", type=str, default=None, help="Optional path to write logs.")
    ap.add_argument("--progress", action="store_true", help="Show progress bars for per-cluster loops.")
    args = ap.parse_args()

    setup_logging(verbosity=args.verbose if not args.quiet else 0, log_file=args.log_file)
    logging.info("Args: %s", vars(args))
    os.makedirs(args.out, exist_ok=True)

    inputs = load_inputs(args)

    with step("Scale gene effect"):
        scaled = scale_effects(inputs["effect"])

    with step("UMAP"):
        emb2d = embedding.visual_embedding(scaled, n_neighbors=args.n_neighbors, metric=args.metric,
                                           random_state=args.seed)
        emb_hd = embedding.cluster_embedding(scaled, n_neighbors=args.n_neighbors, metric=args.metric,
                                             n_components=args.cluster_dims, random_state=args.seed)
        emb2d.to_csv(os.path.join(args.out, "umap_2d.csv"), index=False)

    for col in args.color_by:
        if col not in inputs["info"].columns:
            logging.warning("Sample info has no column %s", col)
            continue
        plotting.save_figure(plotting.plot_embedding(emb2d, inputs["info"], color=col), f"umap_{col}",
                             args.figures_dir)
    for gene in args.highlight_genes:
        if gene in scaled.columns:
            plotting.save_figure(plotting.plot_gene_highlight(emb2d, scaled, gene), f"umap_{gene}",
                                 args.figures_dir)

    with step("Cluster"):
        graph = clustering.graph_clusters(scaled, k=args.graph_k, random_state=args.seed)
        density = clustering.density_clusters(emb_hd, min_cluster_size=args.min_cluster_size)
        concord, ari = reporting.cluster_concordance(graph, density)
        concord.to_csv(os.path.join(args.out, "cluster_concordance.csv"))

    metrics = {
        "n_cell_lines": int(scaled.shape[0]),
        "n_genes": int(scaled.shape[1]),
        "omics": sorted(inputs["omics"]),
        "adjusted_rand_index": ari,
        "seed": args.seed,
    }
    for tag, clusters in [("graph", graph), ("density", density)]:
        metrics[tag] = analyze_clusters(tag, clusters, scaled, inputs, emb2d, args)

    metrics_path = os.path.join(args.out, "metrics.json")
    with open(metrics_path, "w") as f:
        json.dump(metrics, f, indent=2, default=str)
    logging.info(f"Saved metrics to {metrics_path}")


if __name__ == "__main__":
    main()
