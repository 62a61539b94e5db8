"""角色优先级单元测试"""

from agentroom.core.engine.hierarchy import (
    DEFAULT_ROLE_PRIORITY,
    compare_roles,
    get_highest_priority_role,
    get_role_priority,
    sort_roles_by_priority,
)


class TestRolePriority:
    """角色优先级"""

    def test_known_roles(self):
        assert get_role_priority("planner") < get_role_priority("builder")
        assert get_role_priority("builder") < get_role_priority("reviewer")

    def test_case_insensitive(self):
        assert get_role_priority("Builder") == get_role_priority("builder")

    def test_unknown_role_gets_default(self):
        assert get_role_priority("designer") == DEFAULT_ROLE_PRIORITY

    def test_user_sorts_last(self):
        assert sort_roles_by_priority(["user", "designer", "reviewer"]) == [
            "reviewer",
            "designer",
            "user",
        ]

    def test_sort_is_stable_for_equal_priority(self):
        assert sort_roles_by_priority(["qa", "designer", "builder"]) == [
            "builder",
            "qa",
            "designer",
        ]

    def test_compare_roles(self):
        assert compare_roles("builder", "reviewer") < 0
        assert compare_roles("reviewer", "builder") > 0
        assert compare_roles("qa", "designer") == 0

    def test_highest_priority_role(self):
        assert get_highest_priority_role(["reviewer", "builder"]) == "builder"
        assert get_highest_priority_role([]) is None
