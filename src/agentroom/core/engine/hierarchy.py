"""角色优先级

数值越小优先级越高；未知角色默认 100，user 永远排在最后。
角色名比较不区分大小写。
"""

USER_ROLE = "user"

DEFAULT_ROLE_PRIORITY = 100

ROLE_PRIORITIES: dict[str, int] = {
    "planner": 0,
    "builder": 1,
    "reviewer": 2,
    USER_ROLE: 999,
}


def get_role_priority(role: str) -> int:
    return ROLE_PRIORITIES.get(role.lower(), DEFAULT_ROLE_PRIORITY)


def compare_roles(a: str, b: str) -> int:
    """负数表示 a 优先，正数表示 b 优先，0 表示同级"""
    return get_role_priority(a) - get_role_priority(b)


def sort_roles_by_priority(roles: list[str]) -> list[str]:
    """稳定排序：同优先级保持原有顺序"""
    return sorted(roles, key=get_role_priority)


def get_highest_priority_role(roles: list[str]) -> str | None:
    if not roles:
        return None
    return min(roles, key=get_role_priority)
