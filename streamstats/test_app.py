"""
Unit Tests for the Flask API
Preprocess/analytics endpoints, uploads and production hardening
"""

import io
import json
from unittest.mock import patch

import pytest

RECORDS = [
    {
        'ts': '2024-01-01T12:00:00Z', 'ms_played': 3600000, 'conn_country': 'GB',
        'ip_addr': '203.0.113.7', 'ip_addr_decrypted': '198.51.100.23',
        'master_metadata_track_name': 'A', 'master_metadata_album_artist_name': 'X',
        'master_metadata_album_album_name': 'Alb1', 'spotify_track_uri': 'spotify:track:aaa',
    },
    {
        'ts': '2024-01-02T12:00:00Z', 'ms_played': 7200000, 'conn_country': 'GB',
        'master_metadata_track_name': 'B', 'master_metadata_album_artist_name': 'X',
        'master_metadata_album_album_name': 'Alb1', 'shuffle': True,
    },
    {
        'ts': '2024-01-05T12:00:00Z', 'ms_played': 1800000, 'conn_country': 'GB',
        'master_metadata_track_name': 'A', 'master_metadata_album_artist_name': 'X',
        'master_metadata_album_album_name': 'Alb1',
    },
]


@pytest.fixture
def client():
    """Create test client"""
    from streamstats.app import app, limiter
    app.config['TESTING'] = True
    limiter.enabled = False
    with app.test_client() as client:
        yield client


class TestPreprocessEndpoint:
    """POST /api/preprocess"""

    def test_returns_one_record_per_input(self, client):
        response = client.post('/api/preprocess', json={'records': RECORDS})
        data = json.loads(response.data)

        assert response.status_code == 200
        assert len(data['processed']) == 3
        first = data['processed'][0]
        assert first['date'] == '2024-01-01'
        assert first['track_id'] == 'aaa'
        assert first['country'] == 'United Kingdom'
        assert first['timestamp'].startswith('2024-01-01T12:00:00')

    def test_ip_addresses_never_returned(self, client):
        response = client.post('/api/preprocess', json={'records': RECORDS})
        body = response.get_data(as_text=True)
        assert '203.0.113.7' not in body
        assert '198.51.100.23' not in body
        assert 'ip_addr' not in body

    def test_invalid_timestamp_is_reported_not_rejected(self, client):
        response = client.post('/api/preprocess', json={'records': [{'ts': 'nope', 'ms_played': 1}]})
        data = json.loads(response.data)
        assert response.status_code == 200
        assert data['processed'][0]['date'] == 'Invalid Date'
        assert data['processed'][0]['timestamp'] is None

    @pytest.mark.parametrize('body', [{'records': []}, {'records': 'x'}, {}, None])
    def test_rejects_bad_records(self, client, body):
        response = client.post('/api/preprocess', json=body)
        data = json.loads(response.data)
        assert response.status_code == 400
        assert data['error'] == 'Invalid data: records must be a non-empty array'

    def test_non_object_record(self, client):
        response = client.post('/api/preprocess', json={'records': [1, 2]})
        assert response.status_code == 400

    def test_unexpected_failure(self, client):
        with patch('streamstats.app.normalize', side_effect=RuntimeError('boom')):
            response = client.post('/api/preprocess', json={'records': RECORDS})
        data = json.loads(response.data)
        assert response.status_code == 500
        assert data['error'] == 'Failed to preprocess data'


class TestAnalyticsEndpoints:
    """POST /api/analytics and /api/analytics/artist"""

    def test_full_report(self, client):
        response = client.post('/api/analytics', json={'records': RECORDS})
        data = json.loads(response.data)['analytics']

        assert response.status_code == 200
        assert data['totalHours'] == pytest.approx(3.5)
        assert data['uniqueDays'] == 3
        assert data['shuffleStats'] == {'shuffled': 1, 'notShuffled': 2}
        assert data['topTracks'][0]['track'] == 'B'
        assert data['longestStreak'] == {'days': 2, 'start': '2024-01-01', 'end': '2024-01-02'}
        assert data['albumStats'][0]['depthScore'] == pytest.approx(2.0 / 3.5)
        assert data['albumStats'][0]['mostPlayedTrack']['track'] == 'B'
        assert data['artistAlbumCoverage'][0]['totalHours'] == pytest.approx(3.5)
        assert data['milestones'] == []
        assert len(data['heatmapData']) == 84

    def test_artist_report(self, client):
        response = client.post('/api/analytics/artist', json={'records': RECORDS, 'artist': 'X'})
        data = json.loads(response.data)

        assert response.status_code == 200
        assert data['artist'] == 'X'
        assert data['analytics']['totalHours'] == pytest.approx(3.5)
        assert data['analytics']['uniqueTracks'] == 2

    def test_out_of_range_timestamp_does_not_fail(self, client):
        records = RECORDS + [{'ts': '0001-01-01T00:00:00Z', 'ms_played': 1000, 'conn_country': 'US'}]
        response = client.post('/api/analytics', json={'records': records})
        data = json.loads(response.data)['analytics']

        assert response.status_code == 200
        assert data['uniqueDays'] == 4

    def test_artist_required(self, client):
        response = client.post('/api/analytics/artist', json={'records': RECORDS})
        assert response.status_code == 400


class TestUpload:
    """POST /upload"""

    def test_json_upload(self, client):
        payload = json.dumps(RECORDS).encode('utf-8')
        response = client.post(
            '/upload',
            data={'file': (io.BytesIO(payload), 'Streaming_History_Audio_2024.json')},
            content_type='multipart/form-data'
        )
        data = json.loads(response.data)

        assert response.status_code == 200
        assert data['event_count'] == 3
        assert data['analytics']['totalTracks'] == 3

    def test_wrong_file_type(self, client):
        response = client.post(
            '/upload',
            data={'file': (io.BytesIO(b'hello'), 'notes.txt')},
            content_type='multipart/form-data'
        )
        assert response.status_code == 400

    def test_malformed_json(self, client):
        response = client.post(
            '/upload',
            data={'file': (io.BytesIO(b'{broken'), 'history.json')},
            content_type='multipart/form-data'
        )
        data = json.loads(response.data)
        assert response.status_code == 400
        assert data['error'].startswith('Failed to parse file')

    def test_no_file(self, client):
        response = client.post('/upload', data={}, content_type='multipart/form-data')
        assert response.status_code == 400


class TestProductionHardening:
    """Test production readiness features"""

    def test_health_check(self, client):
        """Test health check endpoint"""
        response = client.get('/health')
        data = json.loads(response.data)

        assert response.status_code == 200
        assert data['status'] == 'healthy'
        assert 'timestamp' in data
        assert 'version' in data

    def test_readiness_check(self, client):
        """Test readiness check endpoint"""
        response = client.get('/ready')
        data = json.loads(response.data)

        assert response.status_code in [200, 503]
        assert 'status' in data

    def test_security_headers(self, client):
        """Test security headers are present"""
        response = client.get('/health')

        headers = response.headers
        assert headers['X-Content-Type-Options'] == 'nosniff'
        assert headers['X-Frame-Options'] == 'DENY'
        assert headers['X-XSS-Protection'] == '1; mode=block'
        assert 'Content-Security-Policy' in headers
        assert 'Strict-Transport-Security' in headers

    def test_404_handler(self, client):
        """Test custom 404 error handler"""
        response = client.get('/non-existent-route')
        data = json.loads(response.data)

        assert response.status_code == 404
        assert data['error'] == 'Resource not found'

    def test_method_not_allowed(self, client):
        response = client.get('/api/analytics')
        assert response.status_code == 405
