#!/usr/bin/env python3
"""
UMAP projections of a cell line x feature matrix.

2D embeddings are for plotting; the higher-dimensional embedding (min_dist=0)
packs neighbours tightly and is what density clustering runs on.
"""
import logging

import numpy as np
import pandas as pd
import umap

N_JOBS = 4


def compute_embedding(matrix: pd.DataFrame, n_neighbors: int = 15, metric: str = "correlation",
                      n_components: int = 2, min_dist: float = 0.1,
                      random_state: int | None = None) -> pd.DataFrame:
    """Fit UMAP from scratch and return UMAP1..UMAPn plus the cell_line column."""
    n_rows = matrix.shape[0]
    if n_neighbors >= n_rows:
        logging.warning("n_neighbors=%d >= %d rows; using %d", n_neighbors, n_rows, n_rows - 1)
        n_neighbors = n_rows - 1
    reducer = umap.UMAP(
        n_neighbors=n_neighbors,
        n_components=n_components,
        metric=metric,
        min_dist=min_dist,
        random_state=random_state,
        # a fixed seed forces UMAP onto a single thread
        n_jobs=1 if random_state is not None else N_JOBS,
    )
    coords = reducer.fit_transform(np.asarray(matrix.values, dtype=float))
    cols = [f"UMAP{i + 1}" for i in range(n_components)]
    emb = pd.DataFrame(coords, columns=cols)
    emb["cell_line"] = matrix.index.astype(str).to_numpy()
    logging.info("UMAP: %d rows -> %d dims (n_neighbors=%d, metric=%s)", n_rows, n_components, n_neighbors, metric)
    return emb


def visual_embedding(matrix: pd.DataFrame, n_neighbors: int = 15, metric: str = "correlation",
                     random_state: int | None = None) -> pd.DataFrame:
    return compute_embedding(matrix, n_neighbors=n_neighbors, metric=metric,
                             n_components=2, min_dist=0.1, random_state=random_state)


def cluster_embedding(matrix: pd.DataFrame, n_neighbors: int = 30, metric: str = "correlation",
                      n_components: int = 10, random_state: int | None = None) -> pd.DataFrame:
    return compute_embedding(matrix, n_neighbors=n_neighbors, metric=metric,
                             n_components=n_components, min_dist=0.0, random_state=random_state)


def embedding_coords(emb: pd.DataFrame) -> pd.DataFrame:
    """UMAP coordinate columns indexed by cell_line."""
    cols = [c for c in emb.columns if c.startswith("UMAP")]
    return emb.set_index("cell_line")[cols]
