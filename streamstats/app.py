import os
import logging
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple
from zoneinfo import ZoneInfo

import pycountry
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException

from streamstats import __version__
from streamstats.analytics import compute_artist_report, compute_report
from streamstats.models import CanonicalEvent, RawEvent
from streamstats.normalizer import INVALID_DATE, TZ_MAP, normalize
from streamstats.parser import ParseError, parse_history_json, parse_history_zip, parse_records

load_dotenv()

# Environment detection
IS_PRODUCTION = os.getenv('FLASK_ENV') == 'production'
IS_DEVELOPMENT = os.getenv('FLASK_ENV') == 'development'

# Configure logging
logging.basicConfig(
    level=logging.INFO if IS_PRODUCTION else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

MAX_UPLOAD_MB = int(os.getenv('MAX_UPLOAD_MB', '500'))
RATE_LIMIT = os.getenv('RATE_LIMIT', '100 per minute' if IS_PRODUCTION else '200 per minute')

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_MB * 1024 * 1024

logger.info(f"Starting streamstats in {'PRODUCTION' if IS_PRODUCTION else 'DEVELOPMENT'} mode")

# CORS configuration - Strict in production
if IS_PRODUCTION:
    allowed_origins = os.getenv('ALLOWED_ORIGINS', '').split(',')
    if not allowed_origins or allowed_origins == ['']:
        logger.warning("No ALLOWED_ORIGINS set in production!")
        allowed_origins = []
else:
    allowed_origins = ['http://localhost:3000', 'http://127.0.0.1:3000']

CORS(app, origins=allowed_origins)
logger.info(f"CORS enabled for origins: {allowed_origins}")

# Rate limiting
limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=[RATE_LIMIT],
    storage_uri="memory://"
)


# Security headers middleware
@app.after_request
def set_security_headers(response):
    """Add security headers to all responses"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-XSS-Protection'] = '1; mode=block'
    response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none';"
    return response


# Error handling
@app.errorhandler(404)
def not_found(error):
    """Handle 404 errors"""
    logger.warning(f"404 error: {request.url}")
    return jsonify({'error': 'Resource not found'}), 404


@app.errorhandler(413)
def too_large(error):
    return jsonify({'error': f'Upload exceeds {MAX_UPLOAD_MB}MB'}), 413


@app.errorhandler(500)
def internal_error(error):
    """Handle 500 errors"""
    logger.error(f"500 error: {str(error)}", exc_info=True)
    return jsonify({'error': 'Internal server error'}), 500


@app.errorhandler(Exception)
def handle_exception(error):
    """Handle all other exceptions"""
    if isinstance(error, HTTPException):
        return jsonify({'error': error.description}), error.code
    logger.error(f"Unhandled exception: {str(error)}", exc_info=True)
    return jsonify({'error': 'An unexpected error occurred'}), 500


# ===========================================================================
# SERIALIZATION
# ===========================================================================

def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {_camel(key): _camelize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_camelize(item) for item in value]
    return value


def serialize_report(report) -> dict:
    """Serialize a Report or ArtistReport with camelCase keys for the dashboard."""
    return _camelize(asdict(report))


def serialize_event(event: CanonicalEvent) -> dict:
    data = asdict(event)
    data['timestamp'] = event.timestamp.isoformat() if event.timestamp is not None else None
    return data


# ===========================================================================
# REQUEST HELPERS
# ===========================================================================

def read_records() -> Tuple[Optional[List[RawEvent]], Optional[Tuple[dict, int]]]:
    """
    Pull raw events out of a {"records": [...]} JSON body.

    Returns:
        (events, None) if the body is usable
        (None, (error_dict, status_code)) otherwise
    """
    body = request.get_json(silent=True)
    records = body.get('records') if isinstance(body, dict) else None

    if not isinstance(records, list) or not records:
        return None, ({'error': 'Invalid data: records must be a non-empty array'}, 400)

    try:
        return parse_records(records), None
    except ParseError as e:
        return None, ({'error': f'Invalid data: {e}'}, 400)


def normalize_and_log(raw_events: List[RawEvent]) -> List[CanonicalEvent]:
    events = normalize(raw_events)
    invalid = sum(1 for e in events if e.date == INVALID_DATE)
    if invalid:
        logger.warning(f"{invalid} of {len(events)} events have unparseable timestamps")
    return events


# ===========================================================================
# HEALTH & MONITORING ENDPOINTS
# ===========================================================================

@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint for load balancers and monitoring"""
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'version': __version__
    }), 200


@app.route('/ready', methods=['GET'])
def readiness_check():
    """Readiness check - verifies the zone database and country table load"""
    try:
        checks = {
            'timezones': all(ZoneInfo(name) is not None for name in TZ_MAP.values()),
            'countries': pycountry.countries.get(alpha_2='US') is not None
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {str(e)}")
        return jsonify({
            'status': 'error',
            'error': str(e)
        }), 503

    status_code = 200 if all(checks.values()) else 503
    return jsonify({
        'status': 'ready' if status_code == 200 else 'not_ready',
        'checks': checks,
        'timestamp': datetime.now(timezone.utc).isoformat()
    }), status_code


# ===========================================================================
# ANALYTICS ENDPOINTS
# ===========================================================================

@app.route('/api/preprocess', methods=['POST'])
def preprocess():
    """Normalize raw streaming history records."""
    raw_events, error = read_records()
    if error:
        return jsonify(error[0]), error[1]

    try:
        events = normalize_and_log(raw_events)
    except Exception:
        logger.error("Preprocessing error", exc_info=True)
        return jsonify({'error': 'Failed to preprocess data'}), 500

    return jsonify({'processed': [serialize_event(e) for e in events]})


@app.route('/api/analytics', methods=['POST'])
def analytics():
    """Normalize records and compute the full report."""
    raw_events, error = read_records()
    if error:
        return jsonify(error[0]), error[1]

    report = compute_report(normalize_and_log(raw_events))
    return jsonify({'analytics': serialize_report(report)})


@app.route('/api/analytics/artist', methods=['POST'])
def artist_analytics():
    """Normalize records and compute the report for a single artist."""
    body = request.get_json(silent=True)
    artist = body.get('artist') if isinstance(body, dict) else None
    if not isinstance(artist, str) or not artist:
        return jsonify({'error': 'Invalid data: artist is required'}), 400

    raw_events, error = read_records()
    if error:
        return jsonify(error[0]), error[1]

    report = compute_artist_report(normalize_and_log(raw_events), artist)
    return jsonify({'artist': artist, 'analytics': serialize_report(report)})


# ZIP magic bytes
ZIP_MAGIC = b'PK\x03\x04'


def is_zip_file(file_bytes):
    """Check if file is a ZIP by magic bytes."""
    return file_bytes[:4] == ZIP_MAGIC


def is_valid_file_type(file_bytes, filename):
    """Check if file is a valid ZIP or JSON file."""
    is_zip = is_zip_file(file_bytes)
    is_json_ext = filename.lower().endswith('.json')
    is_zip_ext = filename.lower().endswith('.zip')
    return is_zip or is_json_ext or is_zip_ext


@app.route('/upload', methods=['POST'])
@limiter.limit("10 per minute")
def upload():
    """Compute the report straight from an uploaded export (.json or .zip)."""
    if 'file' not in request.files:
        return jsonify({"error": "No file provided"}), 400

    file = request.files['file']
    if file.filename == '':
        return jsonify({"error": "No file selected"}), 400

    file_bytes = file.read()

    if not is_valid_file_type(file_bytes, file.filename):
        return jsonify({"error": "Invalid file type. Please upload a .json or .zip file"}), 400

    try:
        if is_zip_file(file_bytes):
            raw_events = parse_history_zip(file_bytes)
        else:
            raw_events = parse_history_json(file_bytes)
    except ParseError as e:
        return jsonify({"error": f"Failed to parse file: {e}"}), 400

    if not raw_events:
        return jsonify({"error": "No listening history found in file"}), 400

    logger.info(f"Upload {file.filename}: {len(raw_events)} events")
    report = compute_report(normalize_and_log(raw_events))
    return jsonify({
        "analytics": serialize_report(report),
        "event_count": len(raw_events)
    })


if __name__ == '__main__':
    app.run(debug=IS_DEVELOPMENT, port=int(os.getenv('PORT', '5001')))
