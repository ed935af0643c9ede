import argparse
import sys
from flask import Flask
from . import create_app
from .services.blob_store import get_image_store
from .services.backfill_service import generate_thumbnails, optimize_images, run_backfill
from .services.serving_service import load_fallback
from .utils.resolvers import UploadsDirResolver


def run_job(name: str, overwrite: bool = False, app: Flask | None = None) -> int:
    app = app or create_app()
    with app.app_context():
        store = get_image_store()

        if name == "backfill":
            resolver = UploadsDirResolver(app.config.get("UPLOADS_DIR", "./uploads"))
            report = run_backfill(store, resolver, load_fallback())
            print(f"Backfill complete: {report}")
            if report.fallback_ids:
                print(f"Fallback image stored for: {', '.join(map(str, report.fallback_ids))}")
            if report.failed_ids:
                print(f"Failed: {', '.join(map(str, report.failed_ids))}")
                return 1
            return 0

        if name == "optimize":
            report = optimize_images(store)
            print(f"Optimized {report.optimized} of {report.examined} images")
            return 1 if report.failed_ids else 0

        if name == "thumbnails":
            report = generate_thumbnails(store, overwrite=overwrite)
            print(f"Generated {report.generated} thumbnails ({report.examined} images examined)")
            return 1 if report.failed_ids else 0

    raise ValueError(f"Unknown job: {name}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Maintenance jobs for stored location images")
    parser.add_argument("job", choices=["backfill", "optimize", "thumbnails"])
    parser.add_argument("--overwrite", action="store_true", help="thumbnails: regenerate existing thumbnails too")
    args = parser.parse_args(argv)
    return run_job(args.job, overwrite=args.overwrite)


if __name__ == "__main__":
    sys.exit(main())
