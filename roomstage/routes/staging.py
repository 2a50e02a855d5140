"""
/api/staging routes - submit, poll, remix and version management.

Handles:
- POST  /api/staging                   - submit a room photo
- GET   /api/staging/<job_id>          - job detail (refreshes async jobs)
- GET   /api/staging/<job_id>/status   - status poll with progress
- PATCH /api/staging/<job_id>          - set-primary | assign-property
- PUT   /api/staging/<job_id>/primary  - set primary version
- POST  /api/staging/<job_id>/remix    - remix a completed job
- GET   /api/staging/versions          - lineage by group_id or job_id

Errors are raised as StagingError subclasses and rendered by
utils/error_handlers.py.
"""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, request, jsonify, g

from roomstage.errors import JobNotFoundError, ValidationError
from roomstage.middleware import require_session
from roomstage.services.job_store import JobStore
from roomstage.services.reconciler import reconciler
from roomstage.services.remix_service import remix_service
from roomstage.services.staging_pipeline import staging_pipeline
from roomstage.utils.helpers import decode_base64_image, iso

bp = Blueprint("staging", __name__)


def _serialize_job(job: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "job_id": str(job["id"]),
        "status": job.get("status"),
        "provider": job.get("provider"),
        "staged_image_url": job.get("staged_image_url"),
        "original_image_url": job.get("original_image_url"),
        "error": job.get("error_message"),
        "room_type": job.get("room_type"),
        "style": job.get("style"),
        "property_id": str(job["property_id"]) if job.get("property_id") else None,
        "credits_used": job.get("credits_used") or 0,
        "created_at": iso(job.get("created_at")),
        "completed_at": iso(job.get("completed_at")),
        "processing_time_ms": job.get("processing_time_ms"),
        "version_group_id": str(job["version_group_id"]) if job.get("version_group_id") else None,
        "is_primary_version": bool(job.get("is_primary_version")),
        "parent_job_id": str(job["parent_job_id"]) if job.get("parent_job_id") else None,
    }


def _serialize_status(job: Dict[str, Any]) -> Dict[str, Any]:
    data = _serialize_job(job)
    data.update(reconciler.project_progress(job))
    return data


def _load_job(job_id: str) -> Dict[str, Any]:
    job = JobStore.get_job(job_id, g.identity_id)
    if not job:
        raise JobNotFoundError(job_id)
    return job


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("JSON object body required")
    return body


@bp.route("", methods=["POST"])
@require_session
def submit_staging():
    """
    Request body:
    {
        "image": "<base64 or data URL>",
        "mime_type": "image/jpeg",     # optional when image is a data URL
        "room_type": "living-room",
        "style": "modern",
        "property_id": "...",          # optional
        "preferred_provider": "gemini" # optional
    }
    """
    body = _json_body()
    try:
        image_bytes, detected_mime = decode_base64_image(body.get("image"))
    except ValueError as e:
        raise ValidationError(str(e))

    mime_type = body.get("mime_type") or detected_mime or ""
    result = staging_pipeline.submit(
        owner_id=g.identity_id,
        image_bytes=image_bytes,
        mime_type=mime_type,
        room_type=body.get("room_type"),
        style=body.get("style"),
        property_id=body.get("property_id"),
        preferred_provider=body.get("preferred_provider"),
    )
    status_code = 202 if result["async"] else 200
    return jsonify({"ok": True, **result}), status_code


@bp.route("/versions", methods=["GET"])
@require_session
def list_versions():
    result = remix_service.list_versions(
        g.identity_id,
        group_id=request.args.get("group_id"),
        job_id=request.args.get("job_id"),
    )
    group = result["version_group"]
    return jsonify({
        "ok": True,
        "versions": [_serialize_job(job) for job in result["versions"]],
        "version_group": {
            "id": str(group["id"]),
            "original_image_url": group.get("original_image_url"),
            "free_remixes_used": group.get("free_remixes_used") or 0,
            "created_at": iso(group.get("created_at")),
        } if group else None,
        "free_remixes_remaining": result["free_remixes_remaining"],
        "total_versions": result["total_versions"],
    })


@bp.route("/<job_id>", methods=["GET"])
@require_session
def get_staging(job_id):
    job = reconciler.refresh_job(_load_job(job_id))
    return jsonify({"ok": True, "job": _serialize_status(job)})


@bp.route("/<job_id>/status", methods=["GET"])
@require_session
def get_staging_status(job_id):
    job = reconciler.refresh_job(_load_job(job_id))
    return jsonify({"ok": True, **_serialize_status(job)})


@bp.route("/<job_id>", methods=["PATCH"])
@require_session
def update_staging(job_id):
    body = _json_body()
    action = body.get("action")
    if action == "set-primary":
        job = remix_service.set_primary(g.identity_id, job_id)
    elif action == "assign-property":
        if "property_id" not in body:
            raise ValidationError("property_id is required")
        job = remix_service.assign_property(g.identity_id, job_id, body.get("property_id"))
    else:
        raise ValidationError(
            f"Unknown action: {action!r}",
            details={"allowed": ["set-primary", "assign-property"]},
        )
    return jsonify({"ok": True, "job": _serialize_job(job)})


@bp.route("/<job_id>/primary", methods=["PUT"])
@require_session
def set_primary(job_id):
    job = remix_service.set_primary(g.identity_id, job_id)
    return jsonify({"ok": True, "job": _serialize_job(job)})


@bp.route("/<job_id>/remix", methods=["POST"])
@require_session
def remix_staging(job_id):
    """
    Request body (snake_case keys, same as POST /api/staging):
    {
        "room_type": "bedroom-master",
        "style": "scandinavian",
        "property_id": "...",          # optional, defaults to the parent's
        "preferred_provider": "gemini" # optional
    }
    """
    body = _json_body()
    result = remix_service.remix(
        g.identity_id,
        job_id,
        room_type=body.get("room_type"),
        style=body.get("style"),
        property_id=body.get("property_id"),
        preferred_provider=body.get("preferred_provider"),
    )
    status_code = 202 if result["async"] else 200
    return jsonify({"ok": True, **result}), status_code
