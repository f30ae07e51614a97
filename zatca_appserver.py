# Purpose: HTTP front end for the ZATCA QR parser used by the scanning UI.
# Maps parse outcomes to display records and suppresses repeated scans per session.

import argparse
import base64
import threading
from collections import OrderedDict

from flask import Flask, jsonify, request
from flask_cors import CORS

from zatca_parser import parse_qr
from zatca_schema import validate_against_schema

# --- CONFIGURATION ---
PORT = 5010
HOST = "127.0.0.1"
MAX_SESSIONS = 1000

app = Flask(__name__)
CORS(app)


class ScanSession:
    """Per-session scan state. Only remembers the last payload it accepted."""

    def __init__(self, session_id):
        self.session_id = session_id
        self.last_payload = None
        self._lock = threading.Lock()

    def accept(self, qr_text):
        """Returns False when qr_text repeats the previous scan of this session."""
        payload = qr_text.strip()
        with self._lock:
            if payload == self.last_payload:
                return False
            self.last_payload = payload
            return True


sessions = OrderedDict()
sessions_lock = threading.Lock()


def get_session(session_id):
    """Returns the session for session_id, evicting the least recently used one past MAX_SESSIONS."""
    with sessions_lock:
        session = sessions.get(session_id)
        if session is None:
            session = ScanSession(session_id)
            sessions[session_id] = session
            while len(sessions) > MAX_SESSIONS:
                evicted_id, _ = sessions.popitem(last=False)
                print(f"ZATCA_APPSERVER: [*] Session {evicted_id} evicted")
        else:
            sessions.move_to_end(session_id)
        return session


def end_session(session_id):
    with sessions_lock:
        return sessions.pop(session_id, None) is not None


def outcome_to_record(outcome, raw_text):
    """Flattens a ParseOutcome into the JSON record shown and stored by the UI."""
    record = {
        "status": "valid" if outcome.is_valid else "invalid",
        "rawData": raw_text,
        "sellerName": None,
        "vatNumber": None,
        "invoiceDate": None,
        "subtotal": None,
        "vatAmount": None,
        "totalAmount": None,
        "extendedTags": {},
        "warnings": [],
        "error": None,
    }

    if not outcome.is_valid:
        error = outcome.error
        record["error"] = {
            "kind": error.kind.value,
            "message": error.describe(),
            "offset": error.offset,
            "tag": error.tag,
            "raw": error.raw,
        }
        return record

    invoice = outcome.invoice
    # Amounts go out as exact decimal text, never float.
    record.update({
        "sellerName": invoice.seller_name,
        "vatNumber": invoice.vat_number,
        "invoiceDate": invoice.timestamp,
        "subtotal": format(invoice.subtotal, "f"),
        "vatAmount": format(invoice.vat_total, "f"),
        "totalAmount": format(invoice.invoice_total, "f"),
        "extendedTags": {
            str(tag): base64.b64encode(value).decode("ascii")
            for tag, value in sorted(invoice.extended_tags.items())
        },
        "warnings": [
            {"kind": w.kind.value, "tag": w.tag, "detail": w.detail}
            for w in invoice.warnings
        ],
    })
    return record


def read_parse_request():
    """Returns (qr_text, None) or (None, (response, status))."""
    data = request.get_json(silent=True)
    if data is None:
        print("ZATCA_APPSERVER: [!] Received invalid JSON payload")
        return None, (jsonify({"error": "Invalid JSON"}), 400)

    is_valid, error_msg = validate_against_schema(data, "ParseRequest")
    if not is_valid or not isinstance(data, dict) or not isinstance(data.get("qrCodeContent"), str):
        print(f"ZATCA_APPSERVER: [!] Request Validation Error: {error_msg}")
        return None, (jsonify({"error": error_msg or "Missing qrCodeContent"}), 400)
    return data["qrCodeContent"], None


def build_record(qr_text):
    outcome = parse_qr(qr_text)
    record = outcome_to_record(outcome, qr_text)
    if outcome.is_valid:
        print(f"ZATCA_APPSERVER: [OK] Valid ZATCA QR from {record['sellerName']}")
        for warning in outcome.invoice.warnings:
            print(f"ZATCA_APPSERVER: [!] Warning: {warning}")
    else:
        print(f"ZATCA_APPSERVER: [!] Invalid QR code: {outcome.error}")

    is_valid, error_msg = validate_against_schema(record, "ScannedQR")
    if not is_valid:
        print(f"ZATCA_APPSERVER: [!] Response Validation Error (ScannedQR): {error_msg}")
    return record


@app.route('/parse', methods=['POST'])
def parse_payload():
    """Parses one captured QR payload and returns its record."""
    qr_text, failure = read_parse_request()
    if failure:
        return failure

    print("ZATCA_APPSERVER: [*] Received Parse Request")
    return jsonify(build_record(qr_text))


@app.route('/sessions/<session_id>/scans', methods=['POST'])
def scan_in_session(session_id):
    """
    Parses a payload captured within a scan session. A payload identical to
    the session's previous scan is answered with {"duplicate": true} and not
    parsed again.
    """
    qr_text, failure = read_parse_request()
    if failure:
        return failure

    session = get_session(session_id)
    if not session.accept(qr_text):
        print(f"ZATCA_APPSERVER: [*] Duplicate scan ignored for session {session_id}")
        return jsonify({"duplicate": True})

    print(f"ZATCA_APPSERVER: [*] Received Scan for session {session_id}")
    return jsonify(build_record(qr_text))


@app.route('/sessions/<session_id>', methods=['DELETE'])
def delete_session(session_id):
    if not end_session(session_id):
        return jsonify({"error": "Session not found"}), 404
    print(f"ZATCA_APPSERVER: [*] Session {session_id} ended")
    return jsonify({"sessionId": session_id, "ended": True})


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="ZATCA QR App Server")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    args = parser.parse_args()

    print(f"ZATCA_APPSERVER: Starting App Server on port {args.port}...")
    app.run(host=args.host, port=args.port, threaded=True)
