#!/usr/bin/env python3
"""
Tests for UMAP embeddings and the two cell-line clusterers.
"""
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from sklearn.metrics import adjusted_rand_score

sys.path.insert(0, str(Path(__file__).parent.parent))

from clustering import NOISE_LABEL, cluster_sizes, correlation_graph, density_clusters, graph_clusters
from embedding import compute_embedding, embedding_coords


def grouped_effects(n_per_group=20, n_genes=50, seed=0):
    """Three groups of cell lines, each with its own dependency profile."""
    rng = np.random.default_rng(seed)
    profiles = rng.normal(0, 3, size=(3, n_genes))
    rows, groups = [], []
    for g in range(3):
        rows.append(profiles[g] + rng.normal(0, 0.3, size=(n_per_group, n_genes)))
        groups += [g] * n_per_group
    ids = [f"ACH-{i:06d}" for i in range(3 * n_per_group)]
    mat = pd.DataFrame(np.vstack(rows), index=ids, columns=[f"G{i}" for i in range(n_genes)])
    return mat, pd.Series(groups, index=ids)


def test_correlation_graph_top_k_edges():
    mat, truth = grouped_effects()
    G = correlation_graph(mat, k=5)
    assert set(G.nodes) == set(mat.index)
    # each node contributes at most k edges
    assert G.number_of_edges() <= 5 * len(mat)
    for u, v, w in G.edges(data="weight"):
        assert w > 0
        assert truth[u] == truth[v]


def test_correlation_graph_keeps_isolated_nodes():
    mat = pd.DataFrame({"a": [1.0, 2.0, 3.0], "b": [3.0, 2.0, 1.0]}, index=["X", "Y", "Z"])
    G = correlation_graph(mat, k=1)
    assert set(G.nodes) == {"X", "Y", "Z"}


def test_graph_clusters_one_label_per_cell_line():
    mat, truth = grouped_effects()
    clusters = graph_clusters(mat, k=10, random_state=0)
    assert list(clusters.columns) == ["cell_line", "cluster"]
    assert len(clusters) == len(mat)
    assert clusters["cell_line"].tolist() == mat.index.tolist()
    assert clusters["cluster"].notna().all()
    assert adjusted_rand_score(truth.values, clusters["cluster"].values) > 0.9


def test_density_clusters_noise_sentinel():
    rng = np.random.default_rng(1)
    centers = np.array([[0, 0, 0], [20, 0, 0], [0, 20, 0]], dtype=float)
    pts = np.vstack([c + rng.normal(0, 0.5, size=(20, 3)) for c in centers] + [np.array([[200.0, 200.0, 200.0]])])
    emb = pd.DataFrame(pts, columns=["UMAP1", "UMAP2", "UMAP3"])
    emb["cell_line"] = [f"ACH-{i:06d}" for i in range(len(emb))]
    clusters = density_clusters(emb, min_cluster_size=5)
    assert len(clusters) == len(emb)
    assert clusters["cluster"].notna().all()
    assert clusters["cluster"].iloc[-1] == NOISE_LABEL
    sizes = cluster_sizes(clusters)
    assert len(sizes.drop(NOISE_LABEL, errors="ignore")) == 3


def test_compute_embedding_shape():
    mat, _ = grouped_effects(n_per_group=10, n_genes=20)
    emb = compute_embedding(mat, n_neighbors=5, n_components=3, random_state=0)
    assert list(emb.columns) == ["UMAP1", "UMAP2", "UMAP3", "cell_line"]
    assert emb["cell_line"].tolist() == mat.index.tolist()
    assert np.isfinite(embedding_coords(emb).values).all()


def test_compute_embedding_clamps_neighbors():
    mat, _ = grouped_effects(n_per_group=4, n_genes=10)
    emb = compute_embedding(mat, n_neighbors=50, random_state=0)
    assert emb.shape == (12, 3)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
