"""
AWS S3 adapter for source videos.

Downloads videos referenced as s3://bucket/key into the job's working
directory.
"""

import os
import boto3
import logging
from typing import Tuple
from botocore.exceptions import ClientError

from .base import MediaSourceAdapter
from ..errors import ExtractionFailure

logger = logging.getLogger("analysis_worker")


def parse_s3_uri(uri: str) -> Tuple[str, str]:
    """Split s3://bucket/key into (bucket, key)"""
    if not uri.startswith("s3://"):
        raise ExtractionFailure(f"Not an S3 URI: {uri}")
    bucket, _, key = uri[len("s3://"):].partition("/")
    if not bucket or not key:
        raise ExtractionFailure(f"Malformed S3 URI: {uri}")
    return bucket, key


class S3MediaSource(MediaSourceAdapter):
    """AWS S3 implementation of the media source adapter"""

    def __init__(self, region: str = "us-east-1"):
        self.region = region
        self.s3 = None

    def connect(self):
        """Initialize S3 client"""
        try:
            self.s3 = boto3.client('s3', region_name=self.region)
            logger.info(f"S3 media source connected in region: {self.region}")
        except Exception as e:
            logger.error(f"Failed to connect to S3: {e}")
            raise

    def download(self, uri: str, dest_dir: str) -> str:
        """Download an S3 object into dest_dir"""
        if self.s3 is None:
            self.connect()

        bucket, key = parse_s3_uri(uri)
        local_path = os.path.join(dest_dir, f"source_{os.path.basename(key) or 'video.mp4'}")

        try:
            self.s3.download_file(bucket, key, local_path)
            logger.info(f"Downloaded {uri} to {local_path}")
            return local_path
        except ClientError as e:
            logger.error(f"Error downloading {uri}: {e}")
            raise ExtractionFailure(f"Failed to download {uri}: {e}") from e

    def close(self):
        """Close S3 connection"""
        self.s3 = None
        logger.info("S3 media source connection closed")
