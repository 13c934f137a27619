#!/usr/bin/env python3
"""
Cell-line clustering by dependency similarity.

Two independent strategies:
- graph: Pearson correlation between cell lines -> top-k neighbour graph ->
  Louvain modularity maximization
- density: HDBSCAN over a high-dimensional UMAP embedding; low-density
  points get the NOISE_LABEL sentinel

Both return one row per input cell line with a non-null string label.
"""
import logging

import community as community_louvain
import hdbscan
import networkx as nx
import numpy as np
import pandas as pd

from embedding import embedding_coords

NOISE_LABEL = "noise"


def correlation_graph(matrix: pd.DataFrame, k: int = 10) -> nx.Graph:
    """
    Undirected graph over cell lines; each node links to its k most
    correlated other nodes. Edge weight is the correlation, and edges with
    non-positive correlation are not added. Every cell line is a node.
    """
    ids = matrix.index.astype(str).tolist()
    corr = np.corrcoef(np.asarray(matrix.values, dtype=float))
    np.fill_diagonal(corr, -np.inf)
    k = min(k, len(ids) - 1)

    G = nx.Graph()
    G.add_nodes_from(ids)
    if k <= 0:
        return G
    top = np.argsort(-corr, axis=1)[:, :k]
    for i, neighbours in enumerate(top):
        for j in neighbours:
            w = corr[i, j]
            if not np.isfinite(w) or w <= 0:
                continue
            G.add_edge(ids[i], ids[j], weight=float(w))
    logging.info("Correlation graph: %d nodes, %d edges (k=%d)", G.number_of_nodes(), G.number_of_edges(), k)
    return G


def graph_clusters(matrix: pd.DataFrame, k: int = 10, resolution: float = 1.0,
                   random_state: int | None = None) -> pd.DataFrame:
    G = correlation_graph(matrix, k=k)
    partition = community_louvain.best_partition(G, weight="weight", resolution=resolution,
                                                 random_state=random_state)
    if G.number_of_edges():
        q = community_louvain.modularity(partition, G, weight="weight")
        logging.info("Louvain: %d communities, modularity=%.3f", len(set(partition.values())), q)
    out = pd.DataFrame({
        "cell_line": matrix.index.astype(str),
        "cluster": [str(partition[c]) for c in matrix.index.astype(str)],
    })
    return out


def density_clusters(embedding: pd.DataFrame, min_cluster_size: int = 10,
                     min_samples: int | None = None) -> pd.DataFrame:
    """HDBSCAN over the UMAP columns of an embedding table."""
    coords = embedding_coords(embedding)
    clusterer = hdbscan.HDBSCAN(min_cluster_size=min_cluster_size, min_samples=min_samples)
    labels = clusterer.fit_predict(coords.values)
    out = pd.DataFrame({
        "cell_line": coords.index.astype(str),
        "cluster": [NOISE_LABEL if lab < 0 else str(lab) for lab in labels],
    })
    n_noise = int((labels < 0).sum())
    logging.info("HDBSCAN: %d clusters, %d/%d noise (min_cluster_size=%d)",
                 len(set(labels) - {-1}), n_noise, len(labels), min_cluster_size)
    return out


def cluster_sizes(clusters: pd.DataFrame) -> pd.Series:
    return clusters["cluster"].value_counts().rename("n_members")
