"""安全模块：房间密码与分享密码的哈希与校验。"""

import uuid

import bcrypt


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """校验明文密码与已存储哈希值是否匹配。"""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # 存量数据可能保存的是明文
        return plain_password == hashed_password


def get_password_hash(password: str) -> str:
    """对输入密码执行 bcrypt 哈希并返回可持久化的字符串。"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def new_share_token() -> str:
    return uuid.uuid4().hex
