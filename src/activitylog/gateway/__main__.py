"""命令行入口

python -m activitylog.gateway test-webhook [--detailed]
    测试 webhook 集成：直接发送测试 embed，再经完整链路记录 system.test 事件。
python -m activitylog.gateway run-worker
    独立运行投递 worker 池，直到 Ctrl+C。
"""

import argparse
import asyncio
import sys

from activitylog.core.config import ActivityLogConfig, get_db_path, load_config
from activitylog.core.store import create_store_group

from .main import build_services
from .middleware.logging_config import setup_logging

_COLOR_NAMES = {
    0x00FF00: "Green",
    0xFF0000: "Red",
    0xFFFF00: "Yellow",
    0x0099FF: "Blue",
    0xFF9900: "Orange",
    0x9900FF: "Purple",
    0x00FFFF: "Cyan",
}


def color_name(color: int) -> str:
    return _COLOR_NAMES.get(color, f"#{color:06X}")


def _print_table(headers: list[str], rows: list[list[str]]) -> None:
    widths = [
        max(len(str(cell)) for cell in column) for column in zip(headers, *rows, strict=False)
    ]
    line = "+" + "+".join("-" * (w + 2) for w in widths) + "+"
    print(line)
    print("| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths, strict=True)) + " |")
    print(line)
    for row in rows:
        print("| " + " | ".join(str(c).ljust(w) for c, w in zip(row, widths, strict=True)) + " |")
    print(line)


def show_configuration(config: ActivityLogConfig) -> None:
    """打印当前配置与已启用事件"""
    configured = config.webhook.configured
    print("📋 当前配置:")
    _print_table(
        ["Setting", "Value", "Status"],
        [
            ["Webhook URL", "Configured" if configured else "Not set", "✅" if configured else "❌"],
            ["Bot Name", config.webhook.username, "✅"],
            [
                "Discord Enabled",
                "Yes" if config.enabled else "No",
                "✅" if config.enabled else "❌",
            ],
            ["Queue Enabled", "Yes" if config.queue_notifications else "No", "📊"],
            ["Queue Connection", config.queue_connection, "📊"],
            ["Environment", config.environment, "📊"],
            [
                "Bootup Messages",
                "Enabled" if config.send_bootup_message else "Disabled",
                "✅" if config.send_bootup_message else "❌",
            ],
        ],
    )
    print()

    print("🎯 已启用事件:")
    enabled = [
        [event_type, event.icon, color_name(event.color)]
        for event_type, event in config.events.items()
        if event.enabled
    ]
    if enabled:
        _print_table(["Event Type", "Icon", "Color"], enabled)
    else:
        print("⚠️  当前没有启用任何事件!")
    print()


async def test_webhook(detailed: bool = False) -> int:
    """测试 webhook 集成，返回进程退出码"""
    config = load_config()
    print("🧪 正在测试 Discord webhook 集成...")
    print()

    if detailed:
        show_configuration(config)

    store_group = await create_store_group(get_db_path())
    try:
        # 诊断命令内同步直发，不依赖后台 worker
        config = config.model_copy(update={"queue_notifications": False})
        services = build_services(config, store_group)

        print("步骤 1: 测试 webhook 连接...")
        report = await services.activity_logger.test_connectivity()
        if not report.success:
            print(f"❌ {report.message}")
            if report.details:
                print(f"   {report.details}")
            return 1
        print(f"✅ {report.message}")
        if report.details:
            print(f"   {report.details}")
        print()

        print("步骤 2: 经由 activity logger 测试...")
        if not await services.activity_logger.test_webhook():
            print("❌ activity logger 测试失败!")
            print("   请查看日志了解详情。")
            return 1
        print("✅ activity logger 测试完成!")
        print("   请在 Discord 频道中查看测试消息。")
        print()
        print("🎉 全部测试通过! Discord 集成工作正常。")
        return 0
    finally:
        await store_group.conn.close()


async def run_worker() -> int:
    """独立运行 worker 池"""
    config = load_config()
    store_group = await create_store_group(get_db_path())
    services = build_services(config, store_group)
    await services.worker_pool.start()
    try:
        await asyncio.Event().wait()
    finally:
        await services.worker_pool.stop()
        await store_group.conn.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m activitylog.gateway",
        description="Activity Log Relay 命令行工具",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    test_parser = subparsers.add_parser("test-webhook", help="测试 Discord webhook 集成")
    test_parser.add_argument(
        "--detailed",
        action="store_true",
        help="显示详细配置信息",
    )

    subparsers.add_parser("run-worker", help="独立运行投递 worker 池")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.command == "test-webhook":
        return asyncio.run(test_webhook(detailed=args.detailed))

    try:
        return asyncio.run(run_worker())
    except KeyboardInterrupt:
        print("\n已停止")
        return 0


if __name__ == "__main__":
    sys.exit(main())
