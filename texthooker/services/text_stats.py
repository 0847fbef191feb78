"""
texthooker.services.text_stats
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

行文本统计：日文字符计数（汉字 / 平假名 / 片假名）与行 ID 生成。
"""
from __future__ import annotations

import re
import uuid

# CJK 统一表意文字（含扩展 A 与兼容表意文字）、平假名、片假名（含注音扩展与半角片假名）
_JAPANESE_CHAR_RE = re.compile(
    "["
    "々〇〡-〩〸-〻"  # 々 〇 及汉字数字记号
    "㐀-䶿"
    "一-鿿"
    "豈-﫿"
    "\U00020000-\U0003134f"
    "ぁ-ゖゝ-ゟ"  # 平假名
    "ァ-ヺヽ-ヿ"  # 片假名
    "ㇰ-ㇿ"
    "ｦ-ｯｱ-ﾝ"
    "]",
)


def count_japanese_characters(text: str) -> int:
    """统计文本中属于汉字、平假名、片假名的字符数。

    >>> count_japanese_characters("こんにちは世界 hello")
    7
    """
    return len(_JAPANESE_CHAR_RE.findall(text))


def create_line_id() -> str:
    """生成会话内唯一的行 ID。"""
    return str(uuid.uuid4())
