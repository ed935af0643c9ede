from flask import Blueprint, current_app, jsonify, make_response, request
from ..extensions import limiter
from ..services.blob_store import LocationNotFound, StoreWriteError, get_image_store
from ..services.serving_service import image_payload, no_cache_headers, serve_image, serve_thumbnail
from ..services.upload_service import ingest_upload
from ..utils.cache_bust import cache_busted_url


images_bp = Blueprint("images", __name__, url_prefix="/api/locations")


def _not_found(location_id):
    return jsonify({"success": False, "message": f"Location {location_id} not found"}), 404


def _binary_response(served):
    resp = make_response(served.data)
    resp.headers["Content-Type"] = served.mime_type
    resp.headers.update(no_cache_headers())
    if served.is_fallback:
        resp.headers["X-Image-Fallback"] = "1"
    return resp


@images_bp.route("/<int:location_id>/image", methods=["POST"])
@limiter.limit(lambda: current_app.config.get("UPLOAD_RATELIMIT", "10 per minute"))
def upload_image(location_id: int):
    file = request.files.get("image")
    if file is None:
        return jsonify({"success": False, "message": "No image uploaded"}), 400
    data = file.read()
    try:
        asset = ingest_upload(get_image_store(), location_id, data, file.mimetype)
    except ValueError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except LocationNotFound:
        return _not_found(location_id)
    except StoreWriteError as e:
        current_app.logger.error("Upload for location %s not stored: %s", location_id, e.message)
        return jsonify({"success": False, "message": "Image could not be stored"}), 503
    return jsonify({
        "success": True,
        "imageType": asset.mime_type,
        "size": len(asset.data),
        "hasThumbnail": asset.thumbnail is not None,
        "imageUrl": cache_busted_url(location_id),
    })


@images_bp.route("/<int:location_id>/image", endpoint="serve_image")
def serve_image_route(location_id: int):
    # The "t" query parameter only exists to defeat intermediary caches
    try:
        served = serve_image(get_image_store(), location_id)
    except LocationNotFound:
        return _not_found(location_id)
    return _binary_response(served)


@images_bp.route("/<int:location_id>/image.json")
def image_json(location_id: int):
    try:
        payload = image_payload(get_image_store(), location_id)
    except LocationNotFound:
        return _not_found(location_id)
    resp = jsonify(payload)
    resp.headers.update(no_cache_headers())
    return resp


@images_bp.route("/<int:location_id>/thumbnail")
def thumbnail(location_id: int):
    try:
        served = serve_thumbnail(get_image_store(), location_id)
    except LocationNotFound:
        return _not_found(location_id)
    return _binary_response(served)
