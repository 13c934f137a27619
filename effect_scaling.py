#!/usr/bin/env python3
"""
Per-gene z-scoring of the gene-effect matrix.

Zero-variance genes come out as 0.0 in every cell line, never NaN, so the
scaled matrix is always finite and can go straight into UMAP and xgboost.
"""
import logging

import pandas as pd
from sklearn.preprocessing import StandardScaler


def zero_variance_genes(effect: pd.DataFrame) -> list:
    std = effect.std(axis=0, ddof=0)
    return std.index[~(std > 0)].tolist()


def scale_effects(effect: pd.DataFrame) -> pd.DataFrame:
    """
    Center each gene to zero mean and unit (population) variance.

    Constant genes are not removed and are not NaN: StandardScaler leaves
    them at exactly 0.0 after centering. They are reported at WARNING so
    degenerate inputs show up in the log.
    """
    degenerate = zero_variance_genes(effect)
    if degenerate:
        logging.warning("%d genes have zero variance and carry no signal after scaling: %s",
                        len(degenerate), degenerate[:10])
    scaler = StandardScaler()
    scaled = scaler.fit_transform(effect.values)
    out = pd.DataFrame(scaled, index=effect.index.copy(), columns=effect.columns.copy())
    logging.debug("Scaled %d cell lines x %d genes", out.shape[0], out.shape[1])
    return out
