#!/usr/bin/env python3
"""
End-to-end run of the analysis pass on a small synthetic data directory.
"""
import json
import os
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

import run_cluster_analysis


def write_data_dir(root: Path, n_per_group: int = 20, n_genes: int = 30, seed: int = 0):
    rng = np.random.default_rng(seed)
    ids = [f"ACH-{i:06d}" for i in range(3 * n_per_group)]
    genes = [f"GENE{i} ({1000 + i})" for i in range(n_genes)]
    profiles = rng.normal(0, 1.5, size=(3, n_genes))
    effect = np.vstack([profiles[g] + rng.normal(0, 0.3, size=(n_per_group, n_genes)) for g in range(3)])
    root.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(effect, index=pd.Index(ids, name="DepMap_ID"), columns=genes).to_csv(root / "Achilles_gene_effect.csv")

    pd.DataFrame({
        "DepMap_ID": ids,
        "stripped_cell_line_name": [f"LINE{i}" for i in range(len(ids))],
        "lineage": (["lung"] * n_per_group + ["skin"] * n_per_group + ["blood"] * n_per_group),
        "harvest_date": pd.date_range("2015-01-01", periods=len(ids), freq="7D").strftime("%Y-%m-%d"),
    }).to_csv(root / "sample_info.csv", index=False)

    expr = pd.DataFrame(rng.normal(5, 1, size=(len(ids), n_genes)), index=pd.Index(ids, name="DepMap_ID"),
                        columns=genes)
    expr.to_csv(root / "CCLE_expression.csv")
    pd.DataFrame({
        "Hugo_Symbol": ["GENE0", "GENE1", "GENE2"],
        "DepMap_ID": ids[:3],
        "Variant_Classification": ["Missense_Mutation"] * 3,
    }).to_csv(root / "CCLE_mutations.csv", index=False)
    return ids


def write_side_inputs(root: Path, ids):
    """Epigenetic TSV (CIMP call, missing for the last lines) and a long modifier screen."""
    epi = root / "epigenetic.tsv"
    pd.DataFrame({
        "DepMap_ID": ids[:-5],
        "CIMP": ["high", "low"] * ((len(ids) - 5) // 2) + ["low"] * ((len(ids) - 5) % 2),
    }).to_csv(epi, sep="\t", index=False)
    modifier = root / "modifier_screen.csv"
    pd.DataFrame({
        "gene": ["GENE0", "GENE1", "GENE2", "GENE0"],
        "screen": ["olaparib", "olaparib", "olaparib", "atr_inhibitor"],
        "score": [-2.5, 0.1, 1.8, -0.4],
    }).to_csv(modifier, index=False)
    return epi, modifier


def test_full_pass(tmp_path, monkeypatch):
    data_dir = tmp_path / "data"
    ids = write_data_dir(data_dir)
    epi, modifier = write_side_inputs(tmp_path, ids)
    out_dir = tmp_path / "out"
    fig_dir = tmp_path / "figures"
    monkeypatch.setattr(sys, "argv", [
        "run_cluster_analysis.py",
        "--data-dir", str(data_dir),
        "--out", str(out_dir),
        "--figures-dir", str(fig_dir),
        "--n-neighbors", "10",
        "--cluster-dims", "5",
        "--min-cluster-size", "5",
        "--top-n", "3",
        "--highlight-genes", "GENE0",
        "--density-by", "cluster", "CIMP", "not_a_column",
        "--epigenetic", str(epi),
        "--modifier-screen", str(modifier),
        "-q",
    ])
    run_cluster_analysis.main()

    metrics = json.loads((out_dir / "metrics.json").read_text())
    assert metrics["n_cell_lines"] == 60
    assert metrics["n_genes"] == 30
    assert metrics["omics"] == ["expression", "mutation"]

    for tag in ("graph", "density"):
        clusters = pd.read_csv(out_dir / f"clusters_{tag}.csv", dtype=str)
        assert len(clusters) == 60
        assert clusters["cluster"].notna().all()
        cv = pd.read_csv(out_dir / f"cv_{tag}.csv")
        ok = cv["auc_dependency"].dropna()
        assert ((ok >= 0) & (ok <= 1)).all()
        assert (out_dir / f"enrichment_{tag}.csv").exists()
        hits = pd.read_csv(out_dir / f"modifier_hits_{tag}.csv")
        assert list(hits.columns) == ["cluster", "n_top", "n_modifier_hits", "modifier_hits"]
        assert (hits["n_modifier_hits"] <= hits["n_top"]).all()

    figures = os.listdir(fig_dir)
    assert any(f.endswith("_umap_lineage.png") for f in figures)
    assert any(f.endswith("_graph_cv_auc.png") for f in figures)
    for tag in ("graph", "density"):
        assert any(f.endswith(f"_{tag}_GENE0_by_cluster_density.png") for f in figures)
        assert any(f.endswith(f"_{tag}_GENE0_by_CIMP_density.png") for f in figures)
    assert not any("not_a_column" in f for f in figures)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
