#!/usr/bin/env python3
"""
DepMap / CCLE loaders and shared pipeline helpers.

Every loader returns a fresh DataFrame keyed by DepMap cell-line id
(``ACH-000001``). Wide matrices are indexed by ``cell_line`` with gene
symbols as columns; the `` (entrez)`` suffix of DepMap headers is removed.
Parser errors propagate to the caller.
"""
import logging
import os
import sys
import time
from contextlib import contextmanager
from typing import Iterable, List, Optional

import pandas as pd
from tqdm import tqdm

DATA_DIR = "data"
GENE_EFFECT_FILE = "Achilles_gene_effect.csv"
SAMPLE_INFO_FILE = "sample_info.csv"
EXPRESSION_FILE = "CCLE_expression.csv"
MUTATIONS_FILE = "CCLE_mutations.csv"
COPY_NUMBER_FILE = "CCLE_gene_cn.csv"

ID_CANDIDATES = ["DepMap_ID", "ModelID", "depmap_id", "model_id", "cell_line", "Unnamed: 0"]
NAME_CANDIDATES = ["stripped_cell_line_name", "StrippedCellLineName", "cell_line_name", "CCLE_Name"]
LINEAGE_CANDIDATES = ["lineage", "OncotreeLineage", "sample_collection_site", "primary_disease"]
HARVEST_CANDIDATES = ["harvest_date", "HarvestDate", "screen_date", "achilles_run_date", "culture_date"]

SILENT_CLASSES = {"Silent", "Intron", "3'UTR", "5'UTR", "IGR", "RNA", "lincRNA", "Flank"}


def setup_logging(verbosity: int = 1, log_file: str | None = None):
    """
    verbosity: 0=WARNING, 1=INFO, 2+=DEBUG
    """
    level = logging.WARNING if verbosity <= 0 else (logging.INFO if verbosity == 1 else logging.DEBUG)
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True,
    )
    logging.debug("Logger initialized (level=%s, file=%s)", logging.getLevelName(level), log_file)


@contextmanager
def step(name: str):
    t0 = time.perf_counter()
    logging.info("▶ %s ...", name)
    try:
        yield
    finally:
        dt = time.perf_counter() - t0
        logging.info("✓ %s (%.2fs)", name, dt)


def maybe_tqdm(iterable, enable: bool, **kwargs):
    return tqdm(iterable, **kwargs) if enable else iterable


def data_path(filename: str, data_dir: str = DATA_DIR) -> str:
    return os.path.join(data_dir, filename)


def read_csv_fast(path: str, sep: str = ",") -> pd.DataFrame:
    try:
        return pd.read_csv(path, sep=sep, engine="pyarrow")
    except ValueError:
        # pyarrow rejects some quoting/delimiter combinations the C engine accepts
        return pd.read_csv(path, sep=sep)


def pick_first_existing(df: pd.DataFrame, candidates: List[str]) -> Optional[str]:
    for c in candidates:
        if c in df.columns:
            return c
    return None


def normalize_gene_symbols(columns: Iterable[str]) -> List[str]:
    """'KRAS (3845)' -> 'KRAS'"""
    return pd.Index([str(c) for c in columns]).str.replace(r"\s*\(\d+\)\s*$", "", regex=True).str.strip().tolist()


def drop_incomplete_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Drop every column holding at least one missing value."""
    keep = df.columns[df.notna().all(axis=0)]
    n_dropped = df.shape[1] - len(keep)
    if n_dropped:
        logging.info("Dropped %d/%d columns with missing values", n_dropped, df.shape[1])
    return df.loc[:, keep].copy()


def load_wide_matrix(path: str, exclude: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """Load a DepMap-style wide matrix (first column = cell-line id, one column per gene)."""
    df = read_csv_fast(path)
    id_col = pick_first_existing(df, ID_CANDIDATES) or df.columns[0]
    df = df.set_index(id_col)
    df.index = df.index.astype(str).str.strip()
    df.index.name = "cell_line"
    df.columns = normalize_gene_symbols(df.columns)
    # Duplicate symbols after suffix stripping: keep the first occurrence
    df = df.loc[:, ~df.columns.duplicated()]
    df = df.apply(pd.to_numeric, errors="coerce")
    df = drop_incomplete_columns(df)
    if exclude is not None:
        exclude = set(exclude)
        before = len(df)
        df = df[~df.index.isin(exclude)]
        logging.info("Excluded %d cell lines by id (%d -> %d)", before - len(df), before, len(df))
    return df


def load_gene_effect(path: str = data_path(GENE_EFFECT_FILE), exclude: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """Gene-effect matrix: cell lines x genes, no missing values."""
    effect = load_wide_matrix(path, exclude=exclude)
    effect = effect[~effect.index.duplicated()]
    logging.info("Gene effect: %d cell lines x %d genes", effect.shape[0], effect.shape[1])
    return effect


def load_expression(path: str = data_path(EXPRESSION_FILE)) -> pd.DataFrame:
    expr = load_wide_matrix(path)
    logging.info("Expression: %d cell lines x %d genes", expr.shape[0], expr.shape[1])
    return expr


def load_copy_number(path: str = data_path(COPY_NUMBER_FILE)) -> pd.DataFrame:
    cn = load_wide_matrix(path)
    logging.info("Copy number: %d cell lines x %d genes", cn.shape[0], cn.shape[1])
    return cn


def load_mutations(path: str = data_path(MUTATIONS_FILE), deleterious_only: bool = False) -> pd.DataFrame:
    """
    Reshape a long MAF-style table into a binary cell line x gene matrix.

    A cell is 1 when the line carries at least one non-silent mutation in
    the gene. Lines without any retained mutation do not appear.
    """
    maf = read_csv_fast(path)
    gene_col = pick_first_existing(maf, ["Hugo_Symbol", "HugoSymbol", "gene"])
    id_col = pick_first_existing(maf, ["DepMap_ID", "ModelID", "Tumor_Sample_Barcode", "cell_line"])
    if gene_col is None or id_col is None:
        raise ValueError(f"Mutation file must have Hugo_Symbol and DepMap_ID columns. Got: {list(maf.columns)}")

    class_col = pick_first_existing(maf, ["Variant_Classification", "VariantInfo"])
    if class_col is not None:
        maf = maf[~maf[class_col].isin(SILENT_CLASSES)]
    if deleterious_only:
        flag_col = pick_first_existing(maf, ["isDeleterious", "LikelyLoF"])
        if flag_col is None:
            raise ValueError("deleterious_only requires an isDeleterious/LikelyLoF column")
        # flags arrive as bool, 0/1 or "True"/"False" strings depending on the release
        maf = maf[maf[flag_col].astype(str).str.strip().str.lower().isin({"true", "1", "1.0"})]

    hits = maf[[id_col, gene_col]].dropna().drop_duplicates()
    hits.columns = ["cell_line", "gene"]
    hits["cell_line"] = hits["cell_line"].astype(str).str.strip()
    wide = (hits.assign(mutated=1)
                .pivot_table(index="cell_line", columns="gene", values="mutated", aggfunc="max", fill_value=0)
                .astype(int))
    wide.columns.name = None
    logging.info("Mutations: %d cell lines x %d mutated genes", wide.shape[0], wide.shape[1])
    return wide


def load_sample_info(path: str = data_path(SAMPLE_INFO_FILE)) -> pd.DataFrame:
    """
    Sample metadata keyed by ``cell_line``.

    Output columns: cell_line, cell_line_name, lineage, harvest_date (NaT when
    the file has no date column), followed by every other original column.
    """
    info = read_csv_fast(path)
    id_col = pick_first_existing(info, ID_CANDIDATES)
    if id_col is None:
        raise ValueError(f"Sample info must contain a DepMap_ID-like column. Got: {list(info.columns)}")
    out = pd.DataFrame({"cell_line": info[id_col].astype(str).str.strip()})

    name_col = pick_first_existing(info, NAME_CANDIDATES)
    out["cell_line_name"] = info[name_col].astype(str) if name_col else out["cell_line"]
    lineage_col = pick_first_existing(info, LINEAGE_CANDIDATES)
    out["lineage"] = info[lineage_col].fillna("unknown").astype(str) if lineage_col else "unknown"
    harvest_col = pick_first_existing(info, HARVEST_CANDIDATES)
    if harvest_col:
        out["harvest_date"] = pd.to_datetime(info[harvest_col], errors="coerce")
        logging.info("Parsed %s: %d/%d dates", harvest_col, out["harvest_date"].notna().sum(), len(out))
    else:
        out["harvest_date"] = pd.NaT
        logging.debug("No harvest date column in %s", path)

    used = {id_col, name_col, lineage_col, harvest_col}
    extra = info[[c for c in info.columns if c not in used and c not in out.columns]]
    out = pd.concat([out, extra.reset_index(drop=True)], axis=1)
    return out.drop_duplicates(subset="cell_line").reset_index(drop=True)


def load_modifier_screen(path: str) -> pd.DataFrame:
    """Long modifier-screen table (gene, screen, score) -> gene x screen matrix."""
    long = read_csv_fast(path)
    cols = {c.lower(): c for c in long.columns}
    missing = [c for c in ("gene", "screen", "score") if c not in cols]
    if missing:
        raise ValueError(f"Modifier screen file must have columns: gene, screen, score. Got: {list(long.columns)}")
    long = long.rename(columns={cols["gene"]: "gene", cols["screen"]: "screen", cols["score"]: "score"})
    long["gene"] = normalize_gene_symbols(long["gene"])
    wide = long.pivot_table(index="gene", columns="screen", values="score", aggfunc="median")
    wide.columns.name = None
    logging.info("Modifier screens: %d genes x %d screens", wide.shape[0], wide.shape[1])
    return wide


def load_epigenetic_annotations(path: str) -> pd.DataFrame:
    """Per cell-line epigenetic annotations (tab separated)."""
    ann = read_csv_fast(path, sep="\t")
    id_col = pick_first_existing(ann, ID_CANDIDATES)
    if id_col is None:
        raise ValueError(f"Annotation file must contain a DepMap_ID-like column. Got: {list(ann.columns)}")
    ann = ann.rename(columns={id_col: "cell_line"})
    ann["cell_line"] = ann["cell_line"].astype(str).str.strip()
    return ann.drop_duplicates(subset="cell_line").reset_index(drop=True)


def read_exclusions(path: str) -> set:
    with open(path, encoding="utf-8") as fh:
        return {line.strip() for line in fh if line.strip() and not line.startswith("#")}
