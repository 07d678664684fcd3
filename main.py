#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
DailyQuest Sync v1.0 - Командная строка
Локальный прогресс квестов с офлайн-синхронизацией

Версия: 1.0.0
Дата: 2025-06-20
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from config import AppConfig
from core.models import ThemeMode
from services import ServiceManager
from services.api_client import ApiError
from services.sync_service import RejectLimitReachedError
from utils.datetime_utils import day_of_year
from utils.logger import setup_logging

logger = logging.getLogger(__name__)

THEME_CHOICES = {mode.name.lower(): mode for mode in ThemeMode}

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='DailyQuest: прогресс квестов с офлайн-синхронизацией')
    parser.add_argument('--json', action='store_true', help='Вывод в формате JSON')
    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('status', help='Состояние хранилища, сети и очереди')

    login = commands.add_parser('login', help='Вход')
    login.add_argument('--email', required=True)
    login.add_argument('--password', required=True)

    register = commands.add_parser('register', help='Регистрация')
    register.add_argument('--username', required=True)
    register.add_argument('--email', required=True)
    register.add_argument('--password', required=True)

    commands.add_parser('logout', help='Выход')

    claim = commands.add_parser('claim', help='Отметить квест выполненным')
    claim.add_argument('quest')
    claim.add_argument('--points', type=int, required=True)
    claim.add_argument('--goal-id')
    claim.add_argument('--goal-progress', type=int, default=0)

    reject = commands.add_parser('reject', help='Отказаться от квеста дня')
    reject.add_argument('quest')
    reject.add_argument('--points', type=int, default=0)

    commands.add_parser('history', help='Журнал квестов')
    commands.add_parser('clear-history', help='Очистить журнал')

    theme = commands.add_parser('theme', help='Показать или сменить тему')
    theme.add_argument('mode', nargs='?', choices=sorted(THEME_CHOICES))

    commands.add_parser('sync', help='Сверить все данные с сервером')
    return parser

async def run_command(args: argparse.Namespace, manager: ServiceManager) -> Dict[str, Any]:
    """Выполнить команду на запущенных сервисах"""
    sync = manager.sync_service
    users = manager.user_service
    today = day_of_year(tz_name=manager.config.sync.timezone)

    if args.command == 'status':
        return manager.health_check()

    if args.command == 'login':
        response = await users.login(args.email, args.password)
        return {'user': response.username, 'logged_in': True}

    if args.command == 'register':
        response = await users.register(args.username, args.email, args.password)
        return {'user': response.username, 'logged_in': True}

    if args.command == 'logout':
        await users.logout()
        return {'logged_in': False}

    if args.command == 'claim':
        progress = await sync.claim_quest(args.quest, args.points, today, args.goal_id, args.goal_progress)
        result = progress.to_dict()
        result['pending_operations'] = len(sync.queue)
        return result

    if args.command == 'reject':
        info = await sync.reject_quest(args.quest, args.points, today)
        return {'rejects_today': info.count, 'remaining': sync.remaining_rejects(today)}

    if args.command == 'history':
        entries = await sync.get_task_history()
        return {'entries': [entry.to_dict() for entry in entries]}

    if args.command == 'clear-history':
        await sync.clear_task_history()
        return {'cleared': True, 'pending_operations': len(sync.queue)}

    if args.command == 'theme':
        if args.mode:
            mode = await sync.save_theme_preference(THEME_CHOICES[args.mode])
        else:
            mode = sync.get_theme_preference()
        return {'theme': mode.name.lower()}

    if args.command == 'sync':
        synced = await sync.refresh()
        result = sync.get_stats()
        result['synced'] = synced
        return result

    raise ValueError(f"Неизвестная команда: {args.command}")

def format_human_readable(result: Dict[str, Any]) -> str:
    lines: List[str] = []
    for key, value in result.items():
        if key == 'entries':
            lines.append(f"📋 Записей: {len(value)}")
            for entry in value:
                icon = "✅" if entry['status'] == 'COMPLETED' else "❌"
                lines.append(f"  {icon} {entry['date']} {entry['time']} {entry['quest']} ({entry['points']})")
        elif isinstance(value, dict):
            lines.append(f"{key}: {json.dumps(value, ensure_ascii=False)}")
        else:
            lines.append(f"{key}: {value}")
    return "\n".join(lines)

async def run(args: argparse.Namespace, app_config: AppConfig) -> Dict[str, Any]:
    async with ServiceManager(app_config) as manager:
        return await run_command(args, manager)

def main(argv: Optional[List[str]] = None) -> int:
    """Главная функция"""
    args = build_parser().parse_args(argv)

    try:
        app_config = AppConfig()
    except ValueError as e:
        print(f"❌ {e}")
        return 2

    setup_logging(app_config)
    logger.debug(f"▶️ Команда: {args.command}")

    try:
        result = asyncio.run(run(args, app_config))
    except RejectLimitReachedError as e:
        print(f"⛔ {e}")
        return 1
    except ApiError as e:
        print(f"❌ Ошибка сервера: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n⚠️ Прервано пользователем")
        return 130

    if args.json:
        print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    else:
        print(format_human_readable(result))
    return 0

# ===== ТОЧКА ВХОДА =====

if __name__ == "__main__":
    sys.exit(main())
