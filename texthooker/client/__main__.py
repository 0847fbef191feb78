"""
texthooker.client.__main__
~~~~~~~~~~~~~~~~~~~~~~~~~~

命令行运行一个采集客户端::

    python -m texthooker.client --media-id 42 --token <jwt>
    python -m texthooker.client --room abc --role guest
    python -m texthooker.client --recent --token <jwt>
    python -m texthooker.client --media-id 42 --token <jwt> --delete-session

连接本地桥接并持续采集，标准输入中的每一行按粘贴来源采集。Ctrl+C 退出。
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from contextlib import suppress
from pathlib import Path

from texthooker.client.capture import CaptureClient, LineSource
from texthooker.client.preferences import CapturePreferences, LocalStore
from texthooker.client.state import Mode
from texthooker.client.store_api import SessionStoreClient
from texthooker.client.timer import format_hms
from texthooker.core.logging import get_logger, setup_logging

logger = get_logger("texthooker.client")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="texthooker-client", description="文本采集客户端")
    parser.add_argument("--media-id", help="绑定的媒体 ID（需要 --token）")
    parser.add_argument("--room", help="要加入的房间 ID")
    parser.add_argument("--role", choices=[Mode.HOST.value, Mode.GUEST.value], default=Mode.HOST.value)
    parser.add_argument("--token", help="登录 JWT")
    parser.add_argument("--username")
    parser.add_argument("--api-url", help="会话存储 REST 地址")
    parser.add_argument("--relay-url", help="协作中继地址")
    parser.add_argument("--bridge-url", help="本地采集桥接地址")
    parser.add_argument("--reconnect", action="store_true", help="桥接断开后持续重连")
    parser.add_argument("--recent", action="store_true", help="列出最近会话后退出（需要 --token）")
    parser.add_argument("--delete-session", action="store_true", help="删除 --media-id 对应的会话后退出")
    parser.add_argument(
        "--state-file",
        default=str(Path.home() / ".texthooker" / "state.json"),
        help="本地存储文件",
    )
    return parser


def load_preferences(args: argparse.Namespace, local_store: LocalStore) -> CapturePreferences:
    prefs = CapturePreferences.load(local_store)
    overrides = {
        "api_url": args.api_url,
        "relay_url": args.relay_url,
        "websocket_url": args.bridge_url,
        "continuous_reconnect": True if args.reconnect else None,
    }
    return prefs.model_copy(update={k: v for k, v in overrides.items() if v is not None})


def build_client(args: argparse.Namespace) -> CaptureClient:
    local_store = LocalStore(args.state_file)
    prefs = load_preferences(args, local_store)

    if args.media_id and not args.token:
        raise SystemExit("--media-id requires --token")
    # 房间预检不需要登录，只有绑定媒体时才需要令牌
    store = None
    if args.media_id or args.room:
        store = SessionStoreClient(prefs.api_url, token=args.token)
    return CaptureClient(
        media_id=args.media_id,
        store=store,
        local_store=local_store,
        preferences=prefs,
        username=args.username,
        token=args.token,
    )


async def _read_stdin(client: CaptureClient) -> None:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        client.ingest_text(line.rstrip("\n"), LineSource.PASTE)


async def show_recent(args: argparse.Namespace) -> None:
    if not args.token:
        raise SystemExit("--recent requires --token")
    prefs = load_preferences(args, LocalStore(args.state_file))
    store = SessionStoreClient(prefs.api_url, token=args.token)
    try:
        recent = await store.recent()
    finally:
        await store.aclose()
    logger.info(
        "最近会话 %d 个 | 总行数=%d | 总字数=%d",
        len(recent.sessions), recent.stats.total_lines, recent.stats.total_chars,
    )
    for item in recent.sessions:
        logger.info(
            "  %s | 行数=%d | 字数=%d | 计时=%s",
            item.media_id or f"room:{item.room_id}",
            item.line_count, item.char_count, format_hms(item.timer_seconds),
        )


async def delete_session(args: argparse.Namespace) -> None:
    if not args.media_id:
        raise SystemExit("--delete-session requires --media-id")
    client = build_client(args)
    try:
        deleted = await client.delete_session()
    finally:
        await client.store.aclose()
    if not deleted:
        raise SystemExit(f"failed to delete session {args.media_id}")


async def run(args: argparse.Namespace) -> None:
    client = build_client(args)
    await client.start()
    if not client.preferences.continuous_reconnect:
        client.bridge.open()
    if args.room and not await client.join_room(args.room, Mode(args.role)):
        logger.warning("未能加入房间 %s，以本地模式继续采集", args.room)
    try:
        await _read_stdin(client)
        # 标准输入结束后继续接收桥接与房间消息
        await asyncio.Event().wait()
    finally:
        await client.close()
        if client.store is not None:
            await client.store.aclose()
        stats = client.stats
        logger.info(
            "已退出 | 行数=%d | 字数=%d | 计时=%s",
            stats["line_count"], stats["char_count"], format_hms(stats["timer_seconds"]),
        )


def main() -> None:
    setup_logging()
    args = build_parser().parse_args()
    if args.recent:
        command = show_recent(args)
    elif args.delete_session:
        command = delete_session(args)
    else:
        command = run(args)
    with suppress(KeyboardInterrupt):
        asyncio.run(command)


if __name__ == "__main__":
    main()
