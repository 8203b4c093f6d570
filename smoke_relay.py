#!/usr/bin/env python3
"""
Manual smoke test against a running relay (local uvicorn or deployed).

    uvicorn myth_story.app:app --app-dir myth_story_backend --port 8000
    python smoke_relay.py http://localhost:8000
"""
import os
import sys
import time

import requests

RELAY_URL = os.getenv("MYTH_RELAY_URL", "http://localhost:8000")
RELAY_API_KEY = os.getenv("RELAY_API_KEY", "")


def _headers():
    headers = {"Content-Type": "application/json"}
    if RELAY_API_KEY:
        headers["Authorization"] = f"Bearer {RELAY_API_KEY}"
    return headers


def smoke_relay(base_url: str, with_voice: bool = False, with_model: bool = False) -> bool:
    print(f"Testing relay at {base_url}...")

    print("\n1. Health")
    try:
        health = requests.get(f"{base_url}/health", timeout=10).json()
    except requests.RequestException as e:
        print(f"Health check failed: {e}")
        return False
    print(f"Health: {health}")
    if not health.get("has_keys"):
        print(f"Missing keys on the relay: {health.get('missing')}")

    print("\n2. Story")
    payload = {"mythology": "Greek", "theme": "Heroism", "length": "short"}
    start = time.time()
    resp = requests.post(f"{base_url}/functions/v1/generate-story", json=payload, headers=_headers(), timeout=180)
    print(f"Request took {time.time() - start:.2f} seconds")
    if resp.status_code != 200:
        print(f"Story request failed: {resp.status_code} {resp.text}")
        return False
    story = resp.json()
    print(f"Title: {story.get('title')}")
    print(f"Arcs: {[arc.get('title') for arc in story.get('storyArcs', [])]}")

    if with_voice:
        print("\n3. Voice")
        text = story["story"][:300]
        resp = requests.post(f"{base_url}/functions/v1/generate-voice", json={"text": text},
                             headers=_headers(), timeout=120)
        if resp.status_code != 200:
            print(f"Voice request failed: {resp.status_code} {resp.text}")
            return False
        print(f"Audio: {len(resp.json().get('audioContent', ''))} base64 characters")

    if with_model:
        print("\n4. 3D model")
        prompt = f"{story['title']}, hero from Greek mythology, full body character"
        resp = requests.post(f"{base_url}/functions/v1/generate-model", json={"prompt": prompt},
                             headers=_headers(), timeout=60)
        if resp.status_code != 200:
            print(f"Model request failed: {resp.status_code} {resp.text}")
            return False
        task_id = resp.json()["taskId"]
        for i in range(30):
            time.sleep(10)
            status = requests.post(f"{base_url}/functions/v1/model-status", json={"taskId": task_id},
                                   headers=_headers(), timeout=30).json()
            print(f"Task {task_id} status: {status.get('status')}")
            if status.get("status") in ("completed", "failed"):
                print(f"Final: {status}")
                break

    print("\nRelay looks healthy")
    return True


if __name__ == "__main__":
    url = sys.argv[1] if len(sys.argv) > 1 else RELAY_URL
    ok = smoke_relay(url, with_voice="--voice" in sys.argv, with_model="--model" in sys.argv)
    sys.exit(0 if ok else 1)
