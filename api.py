# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.

"""
HTTP routes for the companion clients.

    GET  /api/health
    GET  /api/content
    GET  /api/stream/<path>       GET /api/thumbnail/<path>
    /api/clients/...              client registry
    /api/progress/...             watch progress
    /api/channels/...             channel definitions + live channel state
"""

import logging
import os
import time

from flask import Blueprint, Response, current_app, jsonify, request, send_file
from werkzeug.routing import PathConverter

import catalog
from errors import ChannelResolutionEmpty, StreamIOError, StreamNotFound
from storage import normalize_channel
from streaming import KIND_IMAGE, KIND_VIDEO, open_media

logger = logging.getLogger("movielocal.api")

api = Blueprint("api", __name__, url_prefix="/api")


class FilesystemPathConverter(PathConverter):
    """Like <path:...> but keeps the leading slash of an absolute path."""
    regex = ".+"
    part_isolating = False


def _services():
    return current_app.extensions["movielocal"]


def _error(message, status):
    return jsonify({"error": message}), status


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# ============================================================================
# HEALTH / CONTENT
# ============================================================================

@api.route("/health")
def health():
    return jsonify({
        "status": "ok",
        "version": current_app.config["API_VERSION"],
        "serverTime": int(time.time() * 1000),
    })


@api.route("/content")
def content():
    svc = _services()
    cfg = current_app.config
    result = catalog.scan(cfg["MOVIES_DIR"], cfg["SERIES_DIR"], svc.load_metadata())
    return jsonify(catalog.content_response(result, svc.base_url()))


# ============================================================================
# STREAMS
# ============================================================================

def _stream_response(raw_path, kind, not_found_message):
    svc = _services()
    if not os.path.isabs(raw_path):
        # a proxy collapsed the double slash
        raw_path = "/" + raw_path
    try:
        media = open_media(raw_path, kind, allowed_roots=svc.allowed_roots())
    except StreamNotFound:
        logger.warning(f"[STREAM] {kind} not found: {raw_path}")
        return Response(not_found_message, status=404, mimetype="text/plain")
    except StreamIOError as e:
        return Response(f"Error streaming file: {e}", status=500, mimetype="text/plain")

    logger.info(f"[STREAM] {request.remote_addr} <- {media.path} ({media.mimetype}, {media.size} bytes)")
    response = send_file(media, mimetype=media.mimetype, conditional=False, etag=False)
    if media.size is not None:
        response.content_length = media.size
    response.headers["Accept-Ranges"] = "bytes"
    return response


@api.route("/stream/<fspath:file_path>")
def stream_video(file_path):
    return _stream_response(file_path, KIND_VIDEO, "Video not found")


@api.route("/thumbnail/<fspath:file_path>")
def stream_thumbnail(file_path):
    return _stream_response(file_path, KIND_IMAGE, "Thumbnail not found")


# ============================================================================
# CLIENTS
# ============================================================================

@api.route("/clients", methods=["GET"])
def list_clients():
    return jsonify({"clients": _services().clients.get_connected_clients()})


@api.route("/clients/register", methods=["POST"])
def register_client():
    data = _json_body()
    if data is None:
        return _error("invalid JSON body", 400)
    client_id = data.get("clientId")
    if not client_id or not isinstance(client_id, str):
        return _error("clientId is required", 400)

    device_name = data.get("deviceName") or "Unknown Device"
    ip_address = request.remote_addr or "unknown"
    _services().clients.register_client(client_id, str(device_name), ip_address)
    return jsonify({"status": "registered", "clientId": client_id})


@api.route("/clients/<client_id>/heartbeat", methods=["POST"])
def client_heartbeat(client_id):
    _services().clients.update_heartbeat(client_id)
    return jsonify({"status": "ok"})


@api.route("/clients/<client_id>/watching", methods=["POST"])
def client_watching(client_id):
    data = _json_body()
    if data is None:
        return _error("invalid JSON body", 400)
    title = data.get("videoTitle")
    try:
        position = int(data.get("position") or 0)
    except (TypeError, ValueError):
        return _error("position must be a number", 400)

    _services().clients.update_watching(client_id, title if isinstance(title, str) else None, position)
    return jsonify({"status": "updated"})


@api.route("/clients/<client_id>", methods=["DELETE"])
def remove_client(client_id):
    _services().clients.remove_client(client_id)
    return jsonify({"status": "removed"})


# ============================================================================
# WATCH PROGRESS
# ============================================================================

@api.route("/progress/<video_id>", methods=["GET"])
def get_progress(video_id):
    progress = _services().progress.get_progress(video_id)
    if progress is None:
        return _error("No progress found", 404)
    return jsonify(progress)


@api.route("/progress/<video_id>", methods=["POST"])
def save_progress(video_id):
    data = _json_body()
    if data is None:
        return _error("invalid JSON body", 400)
    try:
        position = int(data.get("position") or 0)
        duration = int(data.get("duration") or 0)
    except (TypeError, ValueError):
        return _error("position and duration must be numbers", 400)

    _services().progress.save_progress(video_id, position, duration, bool(data.get("completed", False)))
    return jsonify({"status": "success"})


@api.route("/progress/<video_id>/completed", methods=["POST"])
def mark_completed(video_id):
    _services().progress.mark_completed(video_id)
    return jsonify({"status": "completed"})


# ============================================================================
# CHANNELS
# ============================================================================

def _channel_json(channel):
    svc = _services()
    return {
        "id": channel["id"],
        "name": channel.get("name", channel["id"]),
        "description": channel.get("description", ""),
        "thumbnailUrl": catalog.media_url(svc.base_url(), "thumbnail", channel.get("thumbnailUrl", "")),
        "folderPaths": channel.get("folderPaths", []),
        "isActive": svc.streamer.is_channel_active(channel["id"]),
        "createdAt": channel.get("createdAt", 0),
    }


@api.route("/channels", methods=["GET"])
def list_channels():
    channels = _services().channels.get_all_channels()
    return jsonify({"channels": [_channel_json(c) for c in channels]})


@api.route("/channels", methods=["POST"])
def create_channel():
    data = _json_body()
    if data is None:
        return _error("invalid JSON body", 400)
    try:
        channel = normalize_channel(data)
    except (TypeError, ValueError) as e:
        return _error(str(e), 400)

    svc = _services()
    outside = svc.paths_outside_library(channel["folderPaths"] + [channel["thumbnailUrl"]])
    if outside:
        logger.warning(f"[CHANNEL] Rejected definition {channel['id']}: outside the library {outside}")
        return _error(f"paths outside the media library: {', '.join(outside)}", 400)

    # isActive reflects the scheduler, not what the client sent
    channel["isActive"] = svc.streamer.is_channel_active(channel["id"])
    svc.channels.save_channel(channel)
    logger.info(f"[CHANNEL] Saved definition {channel['id']} ({len(channel['folderPaths'])} folders)")
    return jsonify({"status": "created", "channelId": channel["id"]})


@api.route("/channels/<channel_id>", methods=["GET"])
def get_channel(channel_id):
    channel = _services().channels.get_channel(channel_id)
    if channel is None:
        return _error("Channel not found", 404)
    return jsonify(_channel_json(channel))


@api.route("/channels/<channel_id>/start", methods=["POST"])
def start_channel(channel_id):
    svc = _services()
    channel = svc.channels.get_channel(channel_id)
    if channel is None:
        return _error("Channel not found", 404)
    try:
        svc.streamer.start_channel(channel)
    except ChannelResolutionEmpty:
        return _error("Channel has no playable videos", 409)
    svc.channels.set_active(channel_id, True)
    return jsonify({"status": "started"})


@api.route("/channels/<channel_id>/stop", methods=["POST"])
def stop_channel(channel_id):
    svc = _services()
    svc.streamer.stop_channel(channel_id)
    svc.channels.set_active(channel_id, False)
    return jsonify({"status": "stopped"})


@api.route("/channels/<channel_id>/state", methods=["GET"])
def channel_state(channel_id):
    svc = _services()
    state = svc.streamer.get_channel_state(channel_id)
    if state is None:
        return _error("Channel not active or not found", 404)
    return jsonify({
        "channelId": state["channelId"],
        "currentVideoPath": state["currentVideoPath"],
        "currentVideoUrl": catalog.media_url(svc.base_url(), "stream", state["currentVideoPath"]),
        "currentVideoIndex": state["currentVideoIndex"],
        "currentPosition": state["currentPosition"],
        "totalVideos": len(state["allVideoPaths"]),
        "lastUpdated": state["lastUpdated"],
    })


@api.route("/channels/<channel_id>", methods=["DELETE"])
@api.route("/channels/<channel_id>/delete", methods=["DELETE"])
def delete_channel(channel_id):
    svc = _services()
    svc.streamer.stop_channel(channel_id)
    svc.channels.delete_channel(channel_id)
    return jsonify({"status": "deleted"})
