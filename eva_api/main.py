from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Dict, Literal, Optional, Tuple

import numpy as np
import pandas as pd
from fastapi import FastAPI, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from eva.config import load_settings
from eva.engine import EvaResult, compute_eva
from eva.export import bridge_frame, llm_payload, to_frame
from eva.filters import EvaFilters, build_predicate, normalize_filters
from eva.pages import compute_eva_page
from eva.rows import TransactionRow, available_periods, dimension_names, dimension_values, load_rows
from eva_api.schemas import EvaFiltersModel, MetaListResponse, MetaPeriodsResponse


settings = load_settings()
logging.basicConfig(level=settings.log_level)

app = FastAPI(title="EVA Margin Bridge API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=4)
def _load_rows_cached(path: str, mtime: float) -> Tuple[TransactionRow, ...]:
    logger.info("loading dataset %s", path)
    return tuple(load_rows(path, dimension=settings.default_dimension))


def load_dataset() -> Dict[str, object]:
    path = settings.data_path
    if not path.exists():
        logger.warning("dataset %s not found", path)
        return {"files": [], "periods": [], "rows": ()}
    rows = _load_rows_cached(str(path), path.stat().st_mtime)
    return {"files": [path.name], "periods": available_periods(rows), "rows": rows}


def _filters_from_model(model: EvaFiltersModel, *, available: list[int]) -> EvaFilters:
    raw = model.model_dump(exclude_unset=True)
    return normalize_filters(raw, available_periods=available, default_dimension=settings.default_dimension)


def _compute(f: EvaFilters, data_ctx: Dict[str, object]) -> EvaResult:
    return compute_eva(
        data_ctx.get("rows", ()),
        f.base_period,
        f.comparison_period,
        dimension=f.dimension,
        predicate=build_predicate(f),
        summary_mode=f.summary_mode,
        tolerance=settings.tolerance,
    )


def _json(data: object) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
            },
        )
    )


def _error(exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


@app.get("/meta/periods", response_model=MetaPeriodsResponse)
def meta_periods():
    try:
        data_ctx = load_dataset()
        return _json({"periods": [int(p) for p in data_ctx.get("periods", []) or []]})
    except Exception as exc:
        logger.exception("meta_periods failed")
        return _error(exc)


@app.get("/meta/dimensions", response_model=MetaListResponse)
def meta_dimensions():
    try:
        data_ctx = load_dataset()
        return _json({"values": dimension_names(data_ctx.get("rows", ()))})
    except Exception as exc:
        logger.exception("meta_dimensions failed")
        return _error(exc)


@app.get("/meta/values", response_model=MetaListResponse)
def meta_values(dimension: Optional[str] = Query(default=None)):
    try:
        data_ctx = load_dataset()
        name = dimension or settings.default_dimension
        return _json({"values": dimension_values(data_ctx.get("rows", ()), name)})
    except Exception as exc:
        logger.exception("meta_values failed")
        return _error(exc)


@app.post("/eva")
def eva(filters: EvaFiltersModel):
    try:
        data_ctx = load_dataset()
        f = _filters_from_model(filters, available=data_ctx.get("periods", []))
        return _json(compute_eva_page(f, data_ctx.get("rows", ()), tolerance=settings.tolerance))
    except Exception as exc:
        logger.exception("eva failed")
        return _error(exc)


@app.post("/eva/llm")
def eva_llm(filters: EvaFiltersModel, top_n: int = Query(default=10, ge=0, le=200)):
    try:
        data_ctx = load_dataset()
        f = _filters_from_model(filters, available=data_ctx.get("periods", []))
        if f.base_period is None or f.comparison_period is None:
            return _json({})
        result = _compute(f, data_ctx)
        return _json(llm_payload(result, top_n=top_n))
    except Exception as exc:
        logger.exception("eva_llm failed")
        return _error(exc)


@app.post("/export/{kind}")
def export(kind: Literal["details", "bridge"], filters: EvaFiltersModel):
    try:
        data_ctx = load_dataset()
        f = _filters_from_model(filters, available=data_ctx.get("periods", []))

        export_df = pd.DataFrame()
        if f.base_period is not None and f.comparison_period is not None:
            result = _compute(f, data_ctx)
            export_df = to_frame(result) if kind == "details" else bridge_frame(result)
    except Exception as exc:
        logger.exception("export failed")
        return _error(exc)

    filename = f"eva_{kind}.csv"
    csv_bytes = export_df.to_csv(index=False).encode("utf-8")
    return Response(content=csv_bytes, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})
