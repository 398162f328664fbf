#!/usr/bin/env python3
"""
Manual test script for Controller REST API.

This script demonstrates the Controller API functionality by:
1. Starting the FastAPI server
2. Declaring route intents for the cluster and for one node
3. Listing the intents each node would receive
4. Reporting node status and pruning a departed node

Usage:
    python manual_test_controller.py
"""

import requests
import time
import json
from threading import Thread
import uvicorn
from controller.api import app


def start_server():
    """Start the FastAPI server in a background thread."""
    uvicorn.run(app, host="127.0.0.1", port=8000, log_level="info")


def test_api():
    """Test the Controller API endpoints."""
    base_url = "http://127.0.0.1:8000"

    # Wait for server to start
    print("Waiting for server to start...")
    time.sleep(2)

    print("\n" + "="*70)
    print("Testing Controller REST API")
    print("="*70)

    # Test 1: Cluster-wide intent with an explicit gateway
    print("\n[Test 1] Declaring cluster-wide intent backend-net...")
    intent = {"name": "backend-net", "subnet": "192.168.1.0/24", "gateway": "10.0.0.1"}
    response = requests.put(f"{base_url}/api/v1/intents/backend-net", json=intent)
    print(f"Response: {response.status_code} - {response.json()}")

    # Test 2: Node-scoped intent with a resolved gateway
    print("\n[Test 2] Declaring intent storage-net for node-a...")
    intent = {"name": "storage-net", "subnet": "172.20.0.0/16", "node": "node-a"}
    response = requests.put(f"{base_url}/api/v1/intents/storage-net", json=intent)
    print(f"Response: {response.status_code} - {response.json()}")

    # Test 3: Updating an intent bumps its generation
    print("\n[Test 3] Moving backend-net to gateway 10.0.0.2...")
    intent = {"name": "backend-net", "subnet": "192.168.1.0/24", "gateway": "10.0.0.2"}
    response = requests.put(f"{base_url}/api/v1/intents/backend-net", json=intent)
    print(f"Response: {response.status_code} - generation {response.json()['generation']}")

    # Test 4: Intents per node
    for node in ("node-a", "node-b"):
        print(f"\n[Test 4] Listing intents for {node}...")
        response = requests.get(f"{base_url}/api/v1/intents", params={"node": node})
        print(f"Intents: {json.dumps(response.json(), indent=2)}")

    # Test 5: Node status reports
    print("\n[Test 5] Reporting status from node-a and node-b...")
    for hostname, state in (("node-a", "applied"), ("node-b", "pending")):
        status = {
            "hostname": hostname,
            "state": state,
            "destination": "192.168.1.0/24",
            "gateway": "10.0.0.2",
            "table": 254,
        }
        response = requests.put(f"{base_url}/api/v1/intents/backend-net/status", json=status)
        print(f"{hostname}: {response.status_code}")
    response = requests.get(f"{base_url}/api/v1/intents/backend-net/status")
    print(f"Status: {json.dumps(response.json(), indent=2)}")

    # Test 6: Invalid intent (should return 422)
    print("\n[Test 6] Declaring intent without prefix length...")
    intent = {"name": "broken", "subnet": "192.168.9.0"}
    response = requests.put(f"{base_url}/api/v1/intents/broken", json=intent)
    print(f"Response: {response.status_code}")

    # Test 7: Node removal prunes its status
    print("\n[Test 7] Removing node-b...")
    response = requests.delete(f"{base_url}/api/v1/nodes/node-b")
    print(f"Response: {response.status_code} - {response.json()}")

    # Test 8: Health check
    print("\n[Test 8] Health check...")
    response = requests.get(f"{base_url}/health")
    print(f"Response: {response.status_code} - {response.json()}")

    print("\n" + "="*70)
    print("All tests completed!")
    print("="*70)
    print("\nPress Ctrl+C to stop the server...")


if __name__ == "__main__":
    # Start server in background thread
    server_thread = Thread(target=start_server, daemon=True)
    server_thread.start()

    try:
        # Run tests
        test_api()

        # Keep main thread alive
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nShutting down...")
