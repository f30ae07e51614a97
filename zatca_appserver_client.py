# Purpose: Command-line client for zatca_appserver.py.

import argparse
import json
import os

import requests

PORT = 5010
HOST = "127.0.0.1"
BASE_URL = f"http://{HOST}:{PORT}"
SAMPLE_DIR = "sample_data/valid"


def load_qr_content(qr_input):
    """Accepts QR text or a path to a file holding it."""
    if os.path.exists(qr_input):
        with open(qr_input, 'r', encoding="utf-8") as f:
            qr_content = f.read().strip()
        print(f"ZATCA_APPSERVER_CLIENT: [*] Loaded QR content from file: {qr_input}")
        return qr_content
    print("ZATCA_APPSERVER_CLIENT: [*] Using provided QR content string")
    return qr_input


def post_json(url, payload):
    """POSTs payload and prints the response. Returns the decoded body or None."""
    print(f"ZATCA_APPSERVER_CLIENT: [*] Sending POST request to {url}")
    try:
        response = requests.post(url, json=payload)
    except requests.exceptions.ConnectionError:
        print(f"ZATCA_APPSERVER_CLIENT: [!] Error: Could not connect to {url}. Is zatca_appserver.py running?")
        return None

    print(f"ZATCA_APPSERVER_CLIENT: [*] Status Code: {response.status_code}")
    try:
        resp_json = response.json()
    except ValueError:
        print("ZATCA_APPSERVER_CLIENT: [*] Response Body (Text):")
        print(response.text)
        return None

    print("ZATCA_APPSERVER_CLIENT: [*] Response Body:")
    print(json.dumps(resp_json, indent=4, ensure_ascii=False))
    return resp_json


def send_parse(qr_input, base_url=BASE_URL):
    return post_json(f"{base_url}/parse", {"qrCodeContent": load_qr_content(qr_input)})


def send_scan(session_id, qr_input, base_url=BASE_URL):
    return post_json(f"{base_url}/sessions/{session_id}/scans", {"qrCodeContent": load_qr_content(qr_input)})


def run_interactive_parse(sample_dir=SAMPLE_DIR, base_url=BASE_URL):
    if not os.path.exists(sample_dir):
        print(f"ZATCA_APPSERVER_CLIENT: [!] Error: {sample_dir} not found. Run sample_data.py first.")
        return

    while True:
        raw_files = [f for f in os.listdir(sample_dir) if f.endswith(".txt")]
        if not raw_files:
            print(f"ZATCA_APPSERVER_CLIENT: [!] No QR files found in {sample_dir}.")
            return

        raw_files.sort(key=lambda x: os.path.getmtime(os.path.join(sample_dir, x)))

        print("\nAvailable QR Codes:")
        for i, f in enumerate(raw_files, 1):
            print(f"{i}. {f}")

        choice = input("\nSelect a QR code to parse (q to quit): ").strip()
        if choice.lower() == 'q':
            break

        try:
            idx = int(choice) - 1
        except ValueError:
            print("ZATCA_APPSERVER_CLIENT: [!] Invalid input.")
            continue
        if 0 <= idx < len(raw_files):
            send_parse(os.path.join(sample_dir, raw_files[idx]), base_url)
        else:
            print("ZATCA_APPSERVER_CLIENT: [!] Invalid selection.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Client utility for the ZATCA QR App Server")
    parser.add_argument("--parse", nargs='?', const="interactive",
                        help="QR content string or path to a file containing it. Without a value, pick from sample_data/valid.")
    parser.add_argument("--session", help="Scan session id; sends the --parse input as a session scan")
    parser.add_argument("--url", default=BASE_URL, help="App server base URL")
    args = parser.parse_args()

    if args.parse == "interactive":
        run_interactive_parse(base_url=args.url)
    elif args.parse and args.session:
        send_scan(args.session, args.parse, args.url)
    elif args.parse:
        send_parse(args.parse, args.url)
    else:
        parser.print_help()
