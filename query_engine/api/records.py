from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from query_engine.core.errors import QueryValidationError
from query_engine.db.session import get_db
from query_engine.services.listing import ListingPipeline, params_to_dict
from query_engine.services.metadata import SQLAlchemyModelMetadata
from query_engine.services.model_registry import ModelRegistry, get_registry
from query_engine.services.value_coercion import ValueCoercionError, coerce_for_kind

router = APIRouter()


def _metadata(model: str, registry: ModelRegistry) -> SQLAlchemyModelMetadata:
    metadata = registry.get(model)
    if metadata is None:
        raise HTTPException(status_code=404, detail=f'Unknown model "{model}"')
    return metadata


def _params(request: Request) -> dict:
    return params_to_dict(request.query_params.multi_items())


@router.get("/{model}/meta")
def describe_model(model: str, registry: ModelRegistry = Depends(get_registry)):
    return _metadata(model, registry).describe()


@router.get("/{model}/deleted")
def list_deleted_records(
    model: str,
    request: Request,
    db: Session = Depends(get_db),
    registry: ModelRegistry = Depends(get_registry),
):
    metadata = _metadata(model, registry)
    if not metadata.soft_delete_field:
        raise HTTPException(status_code=404, detail=f'Model "{model}" has no soft-deleted records')
    scope = [metadata.column(metadata.soft_delete_field).is_not(None)]
    return ListingPipeline.for_session(metadata, db).run(
        _params(request),
        scope=scope,
        deleted_only=True,
        resource_path=request.url.path,
    )


@router.get("/{model}/related/{relation}/{parent_id}")
def list_related_records(
    model: str,
    relation: str,
    parent_id: str,
    request: Request,
    db: Session = Depends(get_db),
    registry: ModelRegistry = Depends(get_registry),
):
    metadata = _metadata(model, registry)
    try:
        column, kind = metadata.relation_column(relation)
    except KeyError:
        raise HTTPException(status_code=404, detail=f'Unknown relation "{relation}" for model "{model}"')
    try:
        parent = coerce_for_kind(kind, parent_id)
    except ValueCoercionError as exc:
        raise QueryValidationError([{"field": relation, "reason": str(exc), "rejectedValue": parent_id}])
    return ListingPipeline.for_session(metadata, db).run(
        _params(request),
        scope=[column == parent],
        resource_path=request.url.path,
    )


@router.get("/{model}")
def list_records(
    model: str,
    request: Request,
    db: Session = Depends(get_db),
    registry: ModelRegistry = Depends(get_registry),
):
    metadata = _metadata(model, registry)
    return ListingPipeline.for_session(metadata, db).run(_params(request), resource_path=request.url.path)
