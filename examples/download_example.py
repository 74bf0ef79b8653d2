from __future__ import annotations
from pathlib import Path

from s3_download.core import get_s3_client
from s3_download.download import execute
from s3_download.errors import setup_logging
from s3_download.params import DownloadParameters

if __name__ == "__main__":
    setup_logging()
    s3 = get_s3_client(region_name="us-east-1")
    params = DownloadParameters(
        bucket="my-bucket",
        source_prefix="builds/latest",
        target_folder=Path("downloads"),
        globs=("*.zip", "**/*.log"),
        flatten=False,
        overwrite=False,
        progress=True,
        max_workers=8,
    )
    res = execute(s3, params)
    print("Downloaded:", len(res["downloaded"]), "Bytes:", res["stats"]["bytes"])
