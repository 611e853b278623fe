"""
Image storage for EduCart uploads: listing photos and student ID images.

Images are normalised to JPEG before they are stored. AWS S3 is used when
AWS_S3_BUCKET is set, a local folder served from /uploads otherwise.
"""
import os
import time
import secrets
import logging
from io import BytesIO

from PIL import Image, ImageOps

from constants import IMAGE_QUALITY

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1600
ID_MAX_DIMENSION = 1200

# Upload kind -> folder inside the bucket / upload directory
IMAGE_FOLDERS = {
    'post': 'posts',
    'id': 'ids',
}


def image_key(kind, user_id):
    """Unique object key for a new upload, e.g. posts/12_1700000000_a1b2c3d4.jpg"""
    return f"{IMAGE_FOLDERS[kind]}/{user_id}_{int(time.time())}_{secrets.token_hex(4)}.jpg"


def process_image(file_obj, max_dimension=MAX_DIMENSION) -> bytes:
    """
    EXIF-rotate, flatten transparency onto white, shrink and encode as JPEG.
    """
    img = ImageOps.exif_transpose(Image.open(file_obj)).convert("RGBA")
    flat = Image.new("RGB", img.size, (255, 255, 255))
    flat.paste(img, (0, 0), img)
    flat.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
    out = BytesIO()
    flat.save(out, "JPEG", quality=IMAGE_QUALITY, optimize=True)
    return out.getvalue()


def _max_dimension_for(key):
    return ID_MAX_DIMENSION if key.startswith(IMAGE_FOLDERS['id'] + '/') else MAX_DIMENSION


class LocalStorage:
    def __init__(self, upload_folder: str):
        self.upload_folder = upload_folder
        os.makedirs(upload_folder, exist_ok=True)

    def save_image(self, file_obj, key: str) -> str:
        """Write the processed image under the upload folder. Returns its URL."""
        data = process_image(file_obj, _max_dimension_for(key))
        path = os.path.join(self.upload_folder, key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return self.get_url(key)

    def get_url(self, key: str) -> str:
        return f"/uploads/{key}"


class S3Storage:
    def __init__(self, bucket: str, region: str, cdn_url: str = None):
        import boto3
        self.bucket = bucket
        self.region = region
        self.cdn_url = cdn_url.rstrip("/") if cdn_url else None
        self.client = boto3.client("s3", region_name=region)

    def save_image(self, file_obj, key: str) -> str:
        """Upload the processed image. Returns its public URL."""
        self.client.put_object(
            Bucket=self.bucket,
            Key=f"uploads/{key}",
            Body=process_image(file_obj, _max_dimension_for(key)),
            ContentType="image/jpeg",
        )
        return self.get_url(key)

    def get_url(self, key: str) -> str:
        if self.cdn_url:
            return f"{self.cdn_url}/uploads/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/uploads/{key}"


_storage = None


def init_storage(app):
    """Pick the storage backend from the environment. Call once at startup."""
    global _storage
    bucket = os.environ.get("AWS_S3_BUCKET")
    if bucket:
        region = os.environ.get("AWS_S3_REGION", "ap-southeast-1")
        _storage = S3Storage(bucket=bucket, region=region, cdn_url=os.environ.get("AWS_S3_CDN_URL"))
        logger.info(f"Image storage: S3 bucket {bucket}")
    else:
        _storage = LocalStorage(upload_folder=app.config.get("UPLOAD_FOLDER", "static/uploads"))
        logger.info(f"Image storage: local folder {_storage.upload_folder}")
    return _storage


def get_storage_instance():
    return _storage
