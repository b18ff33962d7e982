import argparse
import random
import time

import requests

from fleet_simulator import perturb_fill

# --- CONFIGURATION ---
SERVER_URL = 'http://127.0.0.1:5000'
BIN_ID = 1  # must match a bin registered through /api/bins


def send_reading(session, server_url, bin_id, fill_level, timeout=5):
    """POST one fill reading; returns the bin as stored by the server."""
    response = session.post(
        f"{server_url}/api/bins/{bin_id}/fill",
        json={"fill_level": fill_level},
        timeout=timeout,
    )
    response.raise_for_status()
    return response.json()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Emulate a bin fill-level sensor.")
    parser.add_argument("--server", default=SERVER_URL)
    parser.add_argument("--bin-id", type=int, default=BIN_ID)
    parser.add_argument("--interval", type=float, default=3.0, help="Seconds between readings.")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--count", type=int, default=None, help="Stop after this many readings.")
    args = parser.parse_args(argv)

    rng = random.Random(args.seed)
    fill_level = 0
    sent = 0
    session = requests.Session()

    print(f"Starting Hardware Simulation for bin {args.bin_id}...")
    print("Press Ctrl+C to stop.")
    try:
        while args.count is None or sent < args.count:
            fill_level = perturb_fill(fill_level, rng)
            try:
                stored = send_reading(session, args.server, args.bin_id, fill_level)
                print(f"Sent: {fill_level}% | Server status: {stored['status']}")
            except requests.exceptions.HTTPError as e:
                if e.response is not None and e.response.status_code == 404:
                    print(f"Error: bin {args.bin_id} not found on server. Register it first!")
                else:
                    print(f"Server Error: {e}")
            except requests.exceptions.ConnectionError:
                print("Could not connect to server. Is app.py running?")
            sent += 1
            time.sleep(args.interval)
    except KeyboardInterrupt:
        print("\nSimulation Stopped.")
    return sent


if __name__ == '__main__':
    main()
