"""API blueprint — watermark an upload, verify an upload."""

import io
import os
import tempfile

from flask import Blueprint, abort, current_app, jsonify, request, send_file
from werkzeug.utils import secure_filename

from blindmark.watermark import detect_media_type, embed_watermark, extract_watermark, make_key

api_bp = Blueprint("api", __name__, url_prefix="/api")

# watermarked output container per media type
_OUTPUT = {
    "image": (".png", "image/png"),
    "audio": (".wav", "audio/wav"),
    "video": (".mp4", "video/mp4"),
}


def _allowed(filename: str) -> bool:
    return "." in filename and \
        filename.rsplit(".", 1)[1].lower() in current_app.config["ALLOWED_EXTENSIONS"]


def _key_params(media_type: str) -> dict:
    cfg = current_app.config
    if media_type == "audio":
        return {
            "strength": cfg["WATERMARK_AUDIO_STRENGTH"],
            "delay": cfg["WATERMARK_AUDIO_DELAY"],
            "spread_factor": cfg["WATERMARK_AUDIO_SPREAD_FACTOR"],
        }
    return {
        "strength": cfg["WATERMARK_IMAGE_STRENGTH"],
        "alpha": cfg["WATERMARK_IMAGE_ALPHA"],
    }


def _read_upload():
    """Validate the multipart form; return (file, safe name, pass-phrase)."""
    f = request.files.get("file")
    if not f or f.filename == "":
        abort(400, description="No file uploaded")
    passphrase = request.form.get("passphrase", "")
    if not passphrase:
        abort(400, description="A passphrase is required")

    filename = secure_filename(f.filename)
    if not _allowed(filename):
        abort(400, description="File type not allowed")
    return f, filename, passphrase


# -------------------------------------------------------------------------
# Embed
# -------------------------------------------------------------------------
@api_bp.route("/watermark", methods=["POST"])
def watermark():
    f, filename, passphrase = _read_upload()
    media_type = detect_media_type(filename)
    suffix, mimetype = _OUTPUT[media_type]
    stem = filename.rsplit(".", 1)[0]

    with tempfile.TemporaryDirectory() as workdir:
        src_path = os.path.join(workdir, filename)
        dst_path = os.path.join(workdir, f"{stem}_watermarked{suffix}")
        f.save(src_path)

        key = make_key(passphrase, media_type, **_key_params(media_type))
        meta = embed_watermark(
            src_path, dst_path, passphrase, media_type,
            key=key, fourcc=current_app.config["VIDEO_FOURCC"],
        )
        with open(dst_path, "rb") as fh:
            payload = io.BytesIO(fh.read())

    current_app.logger.info(
        f"Watermarked {filename} ({media_type}) wm_id={meta['watermark_id']}"
    )
    response = send_file(
        payload,
        mimetype=mimetype,
        as_attachment=True,
        download_name=os.path.basename(dst_path),
    )
    response.headers["X-Watermark-Id"] = meta["watermark_id"]
    return response


# -------------------------------------------------------------------------
# Verify
# -------------------------------------------------------------------------
@api_bp.route("/verify", methods=["POST"])
def verify():
    f, filename, passphrase = _read_upload()
    media_type = detect_media_type(filename)

    with tempfile.TemporaryDirectory() as workdir:
        src_path = os.path.join(workdir, filename)
        f.save(src_path)
        key = make_key(passphrase, media_type, **_key_params(media_type))
        result = extract_watermark(src_path, passphrase, media_type, key=key)

    current_app.logger.info(
        f"Verified {filename} ({media_type}): "
        f"watermarked={result['is_watermarked']} confidence={result['confidence']:.3f}"
    )
    return jsonify(result), 200
