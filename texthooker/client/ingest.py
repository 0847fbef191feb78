"""
texthooker.client.ingest
~~~~~~~~~~~~~~~~~~~~~~~~

两种采集来源的文本提取。

- 桥接：本地采集工具推来的每条消息。JSON 对象且带字符串 ``sentence``
  字段时取该字段，否则整条消息按原文处理。
- 粘贴：往草稿区插入的一段标记，识别其中的段落（``<p>``）作为一行，
  识别后从草稿区移除。
"""
from __future__ import annotations

import json
from html.parser import HTMLParser


def parse_bridge_payload(raw: str | bytes) -> str | None:
    """提取桥接消息中的文本；空白消息返回 None。

    >>> parse_bridge_payload('{"sentence": "こんにちは"}')
    'こんにちは'
    >>> parse_bridge_payload("ただのテキスト")
    'ただのテキスト'
    >>> parse_bridge_payload("   ") is None
    True
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = raw
    try:
        payload = json.loads(raw)
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("sentence"), str):
        text = payload["sentence"]
    if not text.strip():
        return None
    return text


class _ParagraphParser(HTMLParser):
    """收集所有 ``<p>`` 的文本，其余内容作为残留保留。"""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.paragraphs: list[str] = []
        self.residue: list[str] = []
        self._depth = 0
        self._buffer: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "p":
            if self._depth == 0:
                self._buffer = []
            self._depth += 1
        elif tag == "br" and self._depth:
            self._buffer.append("\n")

    def handle_endtag(self, tag):
        if tag == "p" and self._depth:
            self._depth -= 1
            if self._depth == 0:
                self.paragraphs.append("".join(self._buffer))

    def handle_data(self, data):
        if self._depth:
            self._buffer.append(data)
        else:
            self.residue.append(data)

    def close(self):
        super().close()
        # 未闭合的 <p> 也算一个段落
        if self._depth:
            self.paragraphs.append("".join(self._buffer))
            self._depth = 0


def extract_paragraphs(markup: str) -> tuple[list[str], str]:
    """返回 ``(段落文本列表, 非段落残留文本)``。"""
    parser = _ParagraphParser()
    parser.feed(markup)
    parser.close()
    return parser.paragraphs, "".join(parser.residue)


class ScratchPad:
    """粘贴草稿区。

    每次 ``insert`` 视为一次插入事件：其中识别出的每个段落成为一行
    采集文本并从草稿区移除，非段落内容留在 ``content`` 中。
    """

    def __init__(self) -> None:
        self.content = ""

    def insert(self, markup: str) -> list[str]:
        paragraphs, residue = extract_paragraphs(markup)
        self.content += residue
        return [text for text in paragraphs if text.strip()]
