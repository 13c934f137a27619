#!/usr/bin/env python3
"""
Tests for report tables: metadata joins, composition, AUC comparison, confounds.
"""
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from reporting import (
    annotate_clusters, auc_comparison, cluster_concordance, gene_effect_by_group, harvest_date_bias,
    modifier_hits_by_cluster, tissue_composition,
)


@pytest.fixture
def clusters():
    return pd.DataFrame({
        "cell_line": ["c1", "c2", "c3", "c4", "c5", "c6"],
        "cluster": ["0", "0", "0", "1", "1", "noise"],
    })


@pytest.fixture
def sample_info():
    return pd.DataFrame({
        "cell_line": ["c1", "c2", "c2", "c3", "c4", "c5", "other"],
        "cell_line_name": ["A", "B", "B", "C", "D", "E", "Z"],
        "lineage": ["lung", "lung", "lung", "skin", "skin", "skin", "blood"],
        "harvest_date": pd.to_datetime(["2015-01-01", "2015-01-05", "2015-01-05", "2015-01-10",
                                        "2019-06-01", "2019-06-10", "2012-01-01"]),
    })


def test_annotate_never_increases_rows(clusters, sample_info):
    out = annotate_clusters(clusters, sample_info)
    assert len(out) == len(clusters)
    assert out["cell_line"].tolist() == clusters["cell_line"].tolist()
    assert pd.isna(out.loc[out["cell_line"] == "c6", "lineage"]).all()


def test_tissue_composition_rows_sum_to_one(clusters, sample_info):
    comp = tissue_composition(annotate_clusters(clusters, sample_info))
    assert np.allclose(comp.sum(axis=1), 1.0)
    assert comp.loc["0", "lung"] == pytest.approx(2 / 3)
    assert comp.loc["noise", "unknown"] == pytest.approx(1.0)


def test_auc_comparison():
    dep = pd.DataFrame({"cluster": ["0", "1"], "n_members": [3, 2], "auc": [0.9, 0.8], "auc_std": [0.05, 0.1]})
    omics = pd.DataFrame({"cluster": ["0"], "auc": [0.6], "auc_std": [0.1], "n_features": [12]})
    cmp = auc_comparison(dep, omics).set_index("cluster")
    assert cmp.loc["0", "auc_gap"] == pytest.approx(0.3)
    assert np.isnan(cmp.loc["1", "auc_omics"])


def test_harvest_date_bias(clusters, sample_info):
    bias = harvest_date_bias(annotate_clusters(clusters, sample_info)).set_index("cluster")
    assert set(bias.index) == {"0", "1"}
    assert bias.loc["0", "n_dated"] == 3
    assert bias.loc["1", "median_date"] > bias.loc["0", "median_date"]
    assert ((bias["p_value"] >= 0) & (bias["p_value"] <= 1)).all()
    assert bias["q_value"].notna().all()


def test_harvest_date_bias_without_dates(clusters):
    info = pd.DataFrame({"cell_line": ["c1"], "lineage": ["lung"], "harvest_date": [pd.NaT]})
    bias = harvest_date_bias(annotate_clusters(clusters, info))
    assert bias.empty


def test_cluster_concordance_relabelled():
    a = pd.DataFrame({"cell_line": list("abcd"), "cluster": ["0", "0", "1", "1"]})
    b = pd.DataFrame({"cell_line": list("abcd"), "cluster": ["7", "7", "noise", "noise"]})
    table, ari = cluster_concordance(a, b)
    assert ari == pytest.approx(1.0)
    assert table.loc["0", "7"] == 2


def test_modifier_hits_by_cluster():
    enr = pd.DataFrame({
        "cluster": ["0", "0", "1", "1", "noise"],
        "gene": ["KRAS", "MYC", "KRAS", "TP53", "KRAS"],
        "median": [-2.0, -1.0, 0.5, -1.5, -3.0],
    })
    modifier = pd.DataFrame({"drugA": [2.5, 0.1], "drugB": [0.0, -0.2]}, index=["KRAS", "TP53"])
    hits = modifier_hits_by_cluster(enr, modifier, top_n=2, threshold=1.0).set_index("cluster")
    assert "noise" not in hits.index
    assert hits.loc["0", "n_modifier_hits"] == 1
    assert hits.loc["0", "modifier_hits"] == "KRAS"


def test_gene_effect_by_group(clusters):
    effect = pd.DataFrame({"KRAS": [-1.0, -2.0, 0.0, 1.0, 2.0, 3.0]}, index=clusters["cell_line"])
    long = gene_effect_by_group(effect, clusters, "KRAS")
    assert list(long.columns) == ["cell_line", "group", "effect"]
    assert len(long) == 6
    with pytest.raises(ValueError):
        gene_effect_by_group(effect, clusters, "NOPE")


def test_gene_effect_by_annotation_column(clusters, sample_info):
    annotated = annotate_clusters(clusters, sample_info)
    annotated["CIMP"] = ["high", "high", "low", "low", None, "high"]
    effect = pd.DataFrame({"KRAS": [-1.0, -2.0, 0.0, 1.0, 2.0, 3.0]}, index=clusters["cell_line"])
    by_lineage = gene_effect_by_group(effect, annotated, "KRAS", group_col="lineage")
    assert by_lineage.set_index("cell_line").loc["c1", "group"] == "lung"
    # c6 has no sample-info row
    assert by_lineage.set_index("cell_line").loc["c6", "group"] == "unannotated"
    by_cimp = gene_effect_by_group(effect, annotated, "KRAS", group_col="CIMP")
    assert sorted(by_cimp["group"].unique()) == ["high", "low", "unannotated"]
    with pytest.raises(ValueError):
        gene_effect_by_group(effect, annotated, "KRAS", group_col="missing")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
