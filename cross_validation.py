#!/usr/bin/env python3
"""
Cluster-membership cross-validation with gradient-boosted trees.

For every cluster a binary label (member vs rest) is fit with stratified
3-fold ``xgboost.cv``. The reported metrics are the fold means at the
boosting round with the best test AUC (ties -> lowest test RMSE).

Two feature sets:
- dependency: the full scaled gene-effect matrix (circularity check)
- omics: the cluster's top enriched genes measured by independent assays
  (expression, mutation, copy number)

Round count and regularization are fixed; there is no hyperparameter search.
"""
import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd
import xgboost as xgb

from clustering import NOISE_LABEL
from depmap_io import maybe_tqdm
from enrichment import top_enriched_genes

N_FOLDS = 3
NUM_BOOST_ROUND = 20
EVAL_METRICS = ["auc", "rmse", "error", "logloss"]
XGB_PARAMS = {
    "objective": "binary:logistic",
    "eval_metric": EVAL_METRICS,
    "max_depth": 3,
    "eta": 0.3,
    "lambda": 1.0,
    "alpha": 0.0,
    "min_child_weight": 1,
    "nthread": 4,
}

RESULT_COLS = ["cluster", "n_members", "n_samples", "n_features", "best_iteration",
               "auc", "auc_std", "rmse", "error", "logloss", "features"]


def best_iteration(history: pd.DataFrame) -> int:
    """Row position with max test AUC, ties broken by min test RMSE."""
    order = history.assign(_round=np.arange(len(history))).sort_values(
        ["test-auc-mean", "test-rmse-mean", "_round"], ascending=[False, True, True])
    return int(order["_round"].iloc[0])


def _empty_row(cluster: str, n_members: int, n_samples: int, n_features: int, features: str) -> dict:
    return {
        "cluster": cluster, "n_members": n_members, "n_samples": n_samples, "n_features": n_features,
        "best_iteration": np.nan, "auc": np.nan, "auc_std": np.nan, "rmse": np.nan,
        "error": np.nan, "logloss": np.nan, "features": features,
    }


def cross_validate_membership(X: pd.DataFrame, y: pd.Series, cluster: str, features: str,
                              num_boost_round: int = NUM_BOOST_ROUND, seed: int = 0) -> dict:
    """Stratified k-fold CV for one binary label; NaN metrics when a fold could miss a class."""
    n_pos = int(y.sum())
    n_neg = int(len(y) - n_pos)
    if n_pos < N_FOLDS or n_neg < N_FOLDS or X.shape[1] == 0:
        logging.warning("Cluster %s (%s): %d members / %d rest / %d features; skipping CV",
                        cluster, features, n_pos, n_neg, X.shape[1])
        return _empty_row(cluster, n_pos, len(y), X.shape[1], features)

    dtrain = xgb.DMatrix(X.values.astype(float), label=y.values.astype(int), feature_names=[str(c) for c in X.columns])
    history = xgb.cv(
        XGB_PARAMS,
        dtrain,
        num_boost_round=num_boost_round,
        nfold=N_FOLDS,
        stratified=True,
        seed=seed,
        as_pandas=True,
    )
    it = best_iteration(history)
    row = history.iloc[it]
    logging.debug("Cluster %s (%s): best round %d, AUC=%.3f", cluster, features, it, row["test-auc-mean"])
    return {
        "cluster": cluster,
        "n_members": n_pos,
        "n_samples": len(y),
        "n_features": X.shape[1],
        "best_iteration": it,
        "auc": float(row["test-auc-mean"]),
        "auc_std": float(row["test-auc-std"]),
        "rmse": float(row["test-rmse-mean"]),
        "error": float(row["test-error-mean"]),
        "logloss": float(row["test-logloss-mean"]),
        "features": features,
    }


def _evaluable_clusters(clusters: pd.DataFrame) -> list:
    return sorted(c for c in clusters["cluster"].unique() if c != NOISE_LABEL)


def cross_validate_dependency(scaled: pd.DataFrame, clusters: pd.DataFrame,
                              num_boost_round: int = NUM_BOOST_ROUND, seed: int = 0,
                              show_progress: bool = False) -> pd.DataFrame:
    """Predict each cluster from the full dependency matrix."""
    labels = clusters.set_index("cell_line")["cluster"]
    X = scaled.copy()
    X.index = X.index.astype(str)
    X = X.loc[X.index.intersection(labels.index)]
    labels = labels.loc[X.index]

    rows = []
    for cluster in maybe_tqdm(_evaluable_clusters(clusters), show_progress, desc="CV dependency"):
        y = (labels == cluster).astype(int)
        rows.append(cross_validate_membership(X, y, cluster, "dependency",
                                              num_boost_round=num_boost_round, seed=seed))
    return pd.DataFrame(rows, columns=RESULT_COLS)


def omics_features(omics: Dict[str, pd.DataFrame], genes: list, cell_lines: pd.Index) -> pd.DataFrame:
    """Columns ``<assay>_<gene>`` for the requested genes, restricted to ``cell_lines``."""
    blocks = []
    for assay, mat in omics.items():
        present = [g for g in genes if g in mat.columns]
        if not present:
            continue
        block = mat.loc[cell_lines, present]
        block.columns = [f"{assay}_{g}" for g in present]
        blocks.append(block)
    if not blocks:
        return pd.DataFrame(index=cell_lines)
    return pd.concat(blocks, axis=1)


def shared_cell_lines(clusters: pd.DataFrame, omics: Dict[str, pd.DataFrame]) -> pd.Index:
    common = pd.Index(clusters["cell_line"].astype(str))
    for assay, mat in omics.items():
        before = len(common)
        common = common.intersection(mat.index.astype(str))
        logging.info("Omics %s: %d -> %d shared cell lines", assay, before, len(common))
    return common


def cross_validate_omics(clusters: pd.DataFrame, enrichment: pd.DataFrame,
                         omics: Dict[str, pd.DataFrame], top_n: int = 10,
                         direction: str = "negative", num_boost_round: int = NUM_BOOST_ROUND,
                         seed: int = 0, show_progress: bool = False) -> pd.DataFrame:
    """Predict each cluster from independent assays of its top-N enriched genes."""
    omics = {name: _str_index(mat) for name, mat in omics.items()}
    cells = shared_cell_lines(clusters, omics)
    labels = clusters.set_index("cell_line")["cluster"].loc[cells]

    rows = []
    for cluster in maybe_tqdm(_evaluable_clusters(clusters), show_progress, desc="CV omics"):
        genes = top_enriched_genes(enrichment, cluster, n=top_n, direction=direction)
        X = omics_features(omics, genes, cells)
        y = (labels == cluster).astype(int)
        rows.append(cross_validate_membership(X, y, cluster, "omics",
                                              num_boost_round=num_boost_round, seed=seed))
    return pd.DataFrame(rows, columns=RESULT_COLS)


def _str_index(mat: pd.DataFrame) -> pd.DataFrame:
    out = mat.copy()
    out.index = out.index.astype(str)
    return out[~out.index.duplicated()]


def summarize_cv(result: pd.DataFrame, label: Optional[str] = None) -> str:
    ok = result["auc"].dropna()
    tag = label or (result["features"].iloc[0] if len(result) else "cv")
    if ok.empty:
        return f"{tag}: no cluster could be cross-validated"
    return f"{tag}: {len(ok)}/{len(result)} clusters, median AUC={ok.median():.3f} (min {ok.min():.3f}, max {ok.max():.3f})"
