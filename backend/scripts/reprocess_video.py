"""
Reprocess Video Script.

Runs the packaging pipeline again for a failed or completed asset, in this
process, and prints the outcome.

Run: python -m scripts.reprocess_video <asset_id> [--queue]
"""

import argparse
import asyncio
import os
import sys
import uuid

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from hlsvault.core.database import async_session_maker
from hlsvault.core.logging import setup_logging
from hlsvault.core.config import settings
from hlsvault.modules.transcoding.repository import InvalidTransitionError
from hlsvault.modules.transcoding.service import AssetNotFoundError, MediaProcessingService


async def reprocess_video(asset_id: uuid.UUID, queue: bool) -> int:
    """Reprocess one asset. Returns the process exit code."""
    print("\n" + "=" * 60)
    print(f"REPROCESSING ASSET {asset_id}")
    print("=" * 60)

    async with async_session_maker() as session:
        service = MediaProcessingService(session)
        try:
            result = await service.reprocess(asset_id, dispatch=queue)
        except AssetNotFoundError as e:
            print(f"\n❌ {e}")
            return 1
        except InvalidTransitionError as e:
            print(f"\n❌ {e}")
            return 2

        if result is None:
            print("\n✅ Queued for processing")
            return 0

        print(f"\nStatus:   {result.status.value}")
        print(f"Duration: {result.duration}s")
        print(f"Tracks:   {', '.join(result.tracks) or '-'}")
        if result.failed_tracks:
            print(f"Failed:   {', '.join(result.failed_tracks)}")
        if result.manifest_path:
            print(f"Manifest: {result.manifest_path}")
        if result.error_message:
            print(f"\n❌ {result.error_message}")
            return 3

        print("\n✅ Done")
        return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Reprocess a media asset")
    parser.add_argument("asset_id", type=uuid.UUID)
    parser.add_argument("--queue", action="store_true", help="Queue a Celery task instead of running inline")
    args = parser.parse_args()

    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    sys.exit(asyncio.run(reprocess_video(args.asset_id, args.queue)))


if __name__ == "__main__":
    main()
