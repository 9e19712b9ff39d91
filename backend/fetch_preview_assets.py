"""
One-time script: downloads the React, ReactDOM and Babel runtime files the
preview sandbox injects, so previews work without network access.

    data/preview-assets/react.production.min.js
    data/preview-assets/react-dom.production.min.js
    data/preview-assets/babel.min.js

Run once:  python3 fetch_preview_assets.py [--force]
"""

import os
import sys

import httpx
from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

from sketchcoder.config import get_settings
from sketchcoder.sandbox import RUNTIME_ASSETS

settings = get_settings()
force = "--force" in sys.argv[1:]
target_dir = os.path.abspath(settings.preview_asset_dir)
os.makedirs(target_dir, exist_ok=True)

print(f"Preview assets -> {target_dir}\n")

failed = 0
with httpx.Client(timeout=60, follow_redirects=True) as client:
    for filename, url_attr in RUNTIME_ASSETS.items():
        path = os.path.join(target_dir, filename)
        if os.path.exists(path) and not force:
            print(f"  {filename}: present, skipping (use --force to refresh)")
            continue

        url = getattr(settings, url_attr)
        try:
            resp = client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            print(f"  {filename}: FAILED ({e})")
            failed += 1
            continue

        tmp_path = path + ".part"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(resp.text)
        os.replace(tmp_path, path)
        print(f"  {filename}: {len(resp.content) / 1024:.0f}KB from {url}")

if failed:
    print(f"\n{failed} asset(s) could not be downloaded")
    sys.exit(1)
print("\nDone.")
