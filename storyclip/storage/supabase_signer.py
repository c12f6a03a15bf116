import asyncio
from urllib.parse import quote

import requests


class SupabaseStorageSigner:
    """Signs storage objects through the Supabase Storage REST API."""

    def __init__(self, supabase_url: str, service_key: str, request_timeout_sec: float = 15):
        self.base_url = supabase_url.rstrip("/")
        self.service_key = service_key
        self.request_timeout_sec = request_timeout_sec

    def sign(self, bucket: str, path: str, ttl_seconds: int) -> str:
        url = f"{self.base_url}/storage/v1/object/sign/{bucket}/{quote(path)}"
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }
        resp = requests.post(url, headers=headers, json={"expiresIn": int(ttl_seconds)}, timeout=self.request_timeout_sec)
        if resp.status_code != 200:
            raise RuntimeError(f"Sign failed: {resp.status_code} {resp.text}")
        signed = resp.json().get("signedURL") or resp.json().get("signedUrl")
        if not signed:
            raise RuntimeError(f"No signed URL returned for {bucket}/{path}")
        if signed.startswith("http"):
            return signed
        return f"{self.base_url}/storage/v1{signed}"

    async def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        return await asyncio.to_thread(self.sign, bucket, path, ttl_seconds)
