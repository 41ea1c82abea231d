"""存储后端抽象与实现：统一封装本地目录与 S3 兼容对象存储的对象操作。

对象 key 一律相对于配置的根前缀（``STORAGE_PATH_PREFIX``），形如 ``{room}/docs/a.txt``。
后端在进程生命周期内只构建一次（见 ``core.dependencies.get_object_store``），
以参数形式注入到各服务，不作为全局状态直接引用。
"""

from __future__ import annotations

import mimetypes
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.packages.sharebox.core.config import Settings
from app.packages.sharebox.core.constants import DEFAULT_MIME_TYPE, KEY_SEPARATOR
from app.packages.sharebox.core.exceptions import AppException, NotFoundError, StorageUnavailableError
from app.packages.sharebox.core.logger import logger

# S3 DeleteObjects 单次上限
_DELETE_BATCH = 1000


def guess_mime(name: str) -> str:
    mime, _ = mimetypes.guess_type(name)
    return mime or DEFAULT_MIME_TYPE


# ------------------------------------------
# 公共数据结构
# ------------------------------------------

@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    last_modified: Optional[datetime]


@dataclass(frozen=True)
class ObjectPage:
    objects: List[ObjectInfo]
    next_cursor: Optional[str]
    has_more: bool


class StorageBackend:
    """对象存储接口。"""

    def list_objects(self, *, prefix: str, page_size: int = 1000, cursor: Optional[str] = None) -> ObjectPage:
        raise NotImplementedError

    def put_object(self, *, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    def delete_object(self, *, key: str) -> None:
        raise NotImplementedError

    def delete_objects(self, *, keys: List[str]) -> None:
        for key in keys:
            self.delete_object(key=key)

    def copy_object(self, *, source_key: str, dest_key: str) -> None:
        raise NotImplementedError

    def signed_url(self, *, key: str, ttl_seconds: int, filename: Optional[str] = None) -> str:
        raise NotImplementedError

    # 以下为基于基础操作的组合能力

    def iter_objects(self, *, prefix: str, page_size: int = 1000) -> Iterator[ObjectInfo]:
        """分页列举直至耗尽。"""
        cursor: Optional[str] = None
        while True:
            page = self.list_objects(prefix=prefix, page_size=page_size, cursor=cursor)
            yield from page.objects
            if not page.has_more or not page.next_cursor:
                break
            cursor = page.next_cursor

    def delete_prefix(self, *, prefix: str, page_size: int = 1000) -> int:
        """删除前缀下的全部对象，返回删除数量。先列举完再删，避免边删边翻页漏项。"""
        if not prefix.endswith(KEY_SEPARATOR):
            raise AppException("前缀删除必须以 '/' 结尾")
        keys = [obj.key for obj in self.iter_objects(prefix=prefix, page_size=page_size)]
        for i in range(0, len(keys), _DELETE_BATCH):
            self.delete_objects(keys=keys[i : i + _DELETE_BATCH])
        return len(keys)

    def move_object(self, *, source_key: str, dest_key: str) -> None:
        """对象存储没有原生重命名：先复制，复制成功后删除源对象。"""
        self.copy_object(source_key=source_key, dest_key=dest_key)
        self.delete_object(key=source_key)


# ------------------------------------------
# 本地文件系统实现
# ------------------------------------------


class LocalBackend(StorageBackend):
    """以目录树模拟对象存储：对象即文件，空目录在删除后自动清理。"""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        if not self.root.exists():
            try:
                self.root.mkdir(parents=True, exist_ok=True)
            except OSError as exc:  # pragma: no cover - 极端情况下可能失败
                raise StorageUnavailableError(f"无法创建本地根目录: {exc}") from exc

    # 统一的安全路径拼接，防止路径遍历
    def _resolve(self, key: str) -> Path:
        rel_norm = key.strip().lstrip(KEY_SEPARATOR)
        candidate = (self.root / rel_norm).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError as exc:
            raise AppException("非法路径: 越权访问") from exc
        return candidate

    def _key_of(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _prune_empty_dirs(self, start: Path) -> None:
        current = start
        while current != self.root and current.is_dir():
            try:
                current.rmdir()
            except OSError:
                break
            current = current.parent

    def list_objects(self, *, prefix: str, page_size: int = 1000, cursor: Optional[str] = None) -> ObjectPage:
        head = prefix.rpartition(KEY_SEPARATOR)[0]
        base = self._resolve(head) if head else self.root
        keys: list[str] = []
        if base.is_dir():
            for dirpath, _, filenames in os.walk(base):
                for filename in filenames:
                    key = self._key_of(Path(dirpath) / filename)
                    if key.startswith(prefix) and (cursor is None or key > cursor):
                        keys.append(key)
        keys.sort()
        page_keys = keys[:page_size]
        objects = []
        for key in page_keys:
            stat = self._resolve(key).stat()
            objects.append(
                ObjectInfo(
                    key=key,
                    size=int(stat.st_size),
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        has_more = len(keys) > page_size
        return ObjectPage(objects=objects, next_cursor=page_keys[-1] if has_more else None, has_more=has_more)

    def put_object(self, *, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        target = self._resolve(key)
        try:
            if key.endswith(KEY_SEPARATOR):
                target.mkdir(parents=True, exist_ok=True)
                return
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                f.write(data)
        except OSError as exc:
            raise StorageUnavailableError(f"写入对象失败: {key}") from exc

    def delete_object(self, *, key: str) -> None:
        target = self._resolve(key)
        if not target.exists():
            # 允许幂等：不存在则忽略
            return
        try:
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageUnavailableError(f"删除对象失败: {key}") from exc
        self._prune_empty_dirs(target.parent)

    def copy_object(self, *, source_key: str, dest_key: str) -> None:
        src = self._resolve(source_key)
        dst = self._resolve(dest_key)
        if not src.is_file():
            raise NotFoundError(f"对象不存在: {source_key}")
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
        except OSError as exc:
            raise StorageUnavailableError(f"复制对象失败: {source_key}") from exc

    def signed_url(self, *, key: str, ttl_seconds: int, filename: Optional[str] = None) -> str:
        target = self._resolve(key)
        if not target.is_file():
            raise NotFoundError(f"对象不存在: {key}")
        expires = int((datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)).timestamp())
        return f"{target.as_uri()}?expires={expires}"


# ------------------------------------------
# S3 实现（boto3）
# ------------------------------------------


class S3Backend(StorageBackend):
    """S3 兼容实现；阿里云 OSS、MinIO 等通过 ``endpoint_url`` 接入。"""

    def __init__(
        self,
        *,
        bucket: str,
        region: Optional[str],
        access_key_id: Optional[str],
        secret_access_key: Optional[str],
        endpoint_url: Optional[str] = None,
        prefix: Optional[str] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_attempts: int = 3,
    ):
        self.bucket = bucket
        self.prefix = (prefix or "").strip(KEY_SEPARATOR)
        self._client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"max_attempts": max_attempts, "mode": "standard"},
            ),
        )

    # 拼接基于 path_prefix 的对象 key
    def _join_key(self, rel: str) -> str:
        rel_norm = rel.lstrip(KEY_SEPARATOR)
        if self.prefix:
            return f"{self.prefix}{KEY_SEPARATOR}{rel_norm}"
        return rel_norm

    def _strip_key(self, full: str) -> str:
        if self.prefix and full.startswith(self.prefix + KEY_SEPARATOR):
            return full[len(self.prefix) + 1 :]
        return full

    @staticmethod
    def _translate(exc: Exception, what: str) -> AppException:
        if isinstance(exc, ClientError):
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in {"NoSuchKey", "404", "NotFound"}:
                return NotFoundError(f"对象不存在: {what}")
        return StorageUnavailableError(f"对象存储调用失败: {what}")

    def list_objects(self, *, prefix: str, page_size: int = 1000, cursor: Optional[str] = None) -> ObjectPage:
        params = {"Bucket": self.bucket, "Prefix": self._join_key(prefix), "MaxKeys": page_size}
        if cursor:
            params["ContinuationToken"] = cursor
        try:
            resp = self._client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, prefix) from exc
        objects = [
            ObjectInfo(
                key=self._strip_key(item["Key"]),
                size=int(item.get("Size") or 0),
                last_modified=item.get("LastModified"),
            )
            for item in resp.get("Contents", [])
        ]
        has_more = bool(resp.get("IsTruncated"))
        return ObjectPage(objects=objects, next_cursor=resp.get("NextContinuationToken"), has_more=has_more)

    def put_object(self, *, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=self._join_key(key),
                Body=data,
                ContentType=content_type or guess_mime(key),
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, key) from exc

    def delete_object(self, *, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=self._join_key(key))
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, key) from exc

    def delete_objects(self, *, keys: List[str]) -> None:
        for i in range(0, len(keys), _DELETE_BATCH):
            batch = [{"Key": self._join_key(k)} for k in keys[i : i + _DELETE_BATCH]]
            if not batch:
                continue
            try:
                resp = self._client.delete_objects(Bucket=self.bucket, Delete={"Objects": batch, "Quiet": True})
            except (ClientError, BotoCoreError) as exc:
                raise self._translate(exc, f"{len(batch)} objects") from exc
            errors = resp.get("Errors") or []
            if errors:
                failed = [self._strip_key(err.get("Key", "")) for err in errors]
                raise StorageUnavailableError("部分对象删除失败", {"keys": failed})

    def copy_object(self, *, source_key: str, dest_key: str) -> None:
        try:
            self._client.copy_object(
                Bucket=self.bucket,
                Key=self._join_key(dest_key),
                CopySource={"Bucket": self.bucket, "Key": self._join_key(source_key)},
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, source_key) from exc

    def signed_url(self, *, key: str, ttl_seconds: int, filename: Optional[str] = None) -> str:
        params = {"Bucket": self.bucket, "Key": self._join_key(key)}
        if filename:
            params["ResponseContentDisposition"] = f"attachment; filename=\"{filename}\""
        try:
            return self._client.generate_presigned_url("get_object", Params=params, ExpiresIn=ttl_seconds)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, key) from exc


def build_backend(settings: Settings) -> StorageBackend:
    t = (settings.storage_type or "").upper()
    if t == "LOCAL":
        root = settings.storage_local_directory
        if settings.storage_path_prefix:
            root = root / settings.storage_path_prefix.strip(KEY_SEPARATOR)
        logger.info("Object store: local directory %s", root)
        return LocalBackend(root)
    if t == "S3":
        if not settings.storage_bucket:
            raise AppException("S3 配置不完整：缺少 STORAGE_BUCKET")
        logger.info("Object store: bucket %s via %s", settings.storage_bucket, settings.storage_endpoint_url or "aws")
        return S3Backend(
            bucket=settings.storage_bucket,
            region=settings.storage_region,
            access_key_id=settings.storage_access_key_id,
            secret_access_key=settings.storage_secret_access_key,
            endpoint_url=settings.storage_endpoint_url,
            prefix=settings.storage_path_prefix,
            connect_timeout=settings.storage_connect_timeout_seconds,
            read_timeout=settings.storage_read_timeout_seconds,
            max_attempts=settings.storage_max_attempts,
        )
    raise AppException("不支持的存储类型")
