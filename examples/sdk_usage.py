"""Example: Using archive_reader as an SDK.

This example demonstrates how to use archive_reader programmatically
as a Python library (SDK) rather than via the CLI.
"""

import os
from pathlib import Path

from archive_reader import (
    ArchiveFiles,
    DataPackageID,
    DatasetID,
    DatasetName,
    DownloadLayout,
    OverwriteMode,
    Reporter,
    Settings,
    download_archived_files,
    find_archived_files,
)


def example_simple_usage():
    """Simplest usage - list the raw files of one dataset."""
    print("=" * 60)
    print("Example 1: Simple Usage")
    print("=" * 60)

    for match in find_archived_files(DatasetID(id=597319), "*.raw"):
        print(f"  {match.file_id}: {match.record.relative_path_unix}")


def example_with_environment_config():
    """Load configuration from environment variables."""
    print("\n" + "=" * 60)
    print("Example 2: Environment Configuration")
    print("=" * 60)

    os.environ["ARCHIVE_METADATA_TIMEOUT"] = "60"
    os.environ["ARCHIVE_DOWNLOAD_DIR"] = "data/archive"
    os.environ["ARCHIVE_OVERWRITE_MODE"] = "never"

    settings = Settings()
    print(
        f"Loaded config: timeout={settings.metadata_timeout}, "
        f"download_dir={settings.download_dir}"
    )

    download_archived_files(DatasetName(name="QC_Shew_16_01"), "*.raw", config=settings)


def example_with_custom_config():
    """Use programmatic configuration."""
    print("\n" + "=" * 60)
    print("Example 3: Programmatic Configuration")
    print("=" * 60)

    settings = Settings(
        download_dir=Path("my_data"),
        download_layout=DownloadLayout.DATASET_NAME_AND_SUBDIRECTORIES,
        overwrite_mode=OverwriteMode.IF_CHANGED,
        include_all_revisions=False,
        cart_fallback=True,
    )

    downloaded = download_archived_files(DataPackageID(id=2945), config=settings)
    print(f"Downloaded {len(downloaded)} file(s)")


def example_headless_mode():
    """Use silent reporter for headless/server mode."""
    print("\n" + "=" * 60)
    print("Example 4: Headless Mode (No Terminal Output)")
    print("=" * 60)

    reporter = Reporter(silent=True)
    downloaded = download_archived_files(
        DatasetID(id=597319), "*.mzML", download_dir="data", reporter=reporter
    )
    if not downloaded:
        print(f"Download failed: {reporter.error_message}")
        return
    print("✓ Download completed silently")


def example_queue_api():
    """Use ArchiveFiles directly for more control."""
    print("\n" + "=" * 60)
    print("Example 5: Download Queue (More Control)")
    print("=" * 60)

    files = ArchiveFiles.from_settings(Settings(download_dir=Path("data")))
    files.add_entity(DatasetName(name="QC_Shew_16_01"))
    files.add_entity(DatasetName(name="QC_Shew_16_02"))

    def on_downloaded(event):
        if event.unzip_required:
            print(f"  {event.record.filename} should be unzipped in {event.download_dir}")

    files.add_listener(on_downloaded)

    for match in files.find_files("*.zip", subdirectory="SIC*"):
        files.add_to_download_queue(match.file_id, match.record, unzip_required=True)

    files.process_download_queue()


if __name__ == "__main__":
    print("\n" + "=" * 60)
    print("Archive Reader SDK Examples")
    print("=" * 60)
    print("\nThese examples show different ways to use archive_reader")
    print("as a Python library (SDK) in your own code.\n")

    # Uncomment the examples you want to run:

    # example_simple_usage()
    # example_with_environment_config()
    # example_with_custom_config()
    # example_headless_mode()
    # example_queue_api()

    print("\nTo run an example, uncomment it in the __main__ section.")
