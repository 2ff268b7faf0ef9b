"""Tests for the character economy and the mirrored relationship graph."""

from taleweave.core.economy import (
    XP_PER_LEVEL,
    VitalsDelta,
    adjust_relationship,
    apply_vitals_delta,
    apply_xp,
    crossed_threshold,
    learn_skill,
    link_cast,
    link_new_character,
    prune_character,
    reset,
)
from taleweave.core.story import Character, DefaultStats, Item, Scenario
from taleweave.enums import RelationshipTier


def _pair():
    a = Character(id="a", name="Ada")
    b = Character(id="b", name="Bram")
    link_cast([a, b])
    return a, b


class TestVitals:
    def test_clamps_at_bounds(self):
        hero = Character(name="Hero", health=95, happiness=10)
        apply_vitals_delta(hero, VitalsDelta(health=20, happiness=-5))
        assert hero.health == 100
        assert hero.happiness == 5

    def test_happiness_floor(self):
        hero = Character(name="Hero", happiness=3)
        apply_vitals_delta(hero, VitalsDelta(happiness=-10))
        assert hero.happiness == 0

    def test_money_has_no_ceiling(self):
        hero = Character(name="Hero", money=90)
        apply_vitals_delta(hero, VitalsDelta(money=500))
        assert hero.money == 590
        apply_vitals_delta(hero, VitalsDelta(money=-1000))
        assert hero.money == 0

    def test_items_replace_inventory(self):
        hero = Character(name="Hero", items=[Item(name="Rope")])
        apply_vitals_delta(hero, VitalsDelta(items=[Item(name="Lamp"), Item(name="Lamp")]))
        assert [i.name for i in hero.items] == ["Lamp", "Lamp"]

    def test_no_items_keeps_inventory(self):
        hero = Character(name="Hero", items=[Item(name="Rope")])
        apply_vitals_delta(hero, VitalsDelta(health=-1))
        assert [i.name for i in hero.items] == ["Rope"]


class TestProgression:
    def test_level_up_grants_stat_point(self):
        hero = Character(name="Hero")
        assert apply_xp(hero, XP_PER_LEVEL) is True
        assert hero.level == 2
        assert hero.unspent_stat_points == 1

    def test_at_most_one_level_per_turn(self):
        hero = Character(name="Hero")
        apply_xp(hero, XP_PER_LEVEL * 5)
        assert hero.level == 2

    def test_zero_xp(self):
        hero = Character(name="Hero")
        assert apply_xp(hero, 0) is False
        assert hero.xp == 0

    def test_skill_add_is_idempotent(self):
        hero = Character(name="Hero")
        assert learn_skill(hero, "Lockpicking") is True
        assert learn_skill(hero, "Lockpicking") is False
        assert hero.skills == ["Lockpicking"]


class TestRelationships:
    def test_link_cast_creates_zero_edges_both_ways(self):
        a, b = _pair()
        assert a.relationship_to("b").value == 0
        assert b.relationship_to("a").value == 0

    def test_adjust_writes_both_sides(self):
        a, b = _pair()
        assert adjust_relationship({"a": a, "b": b}, "a", "b", 30) == (0, 30)
        assert a.relationship_to("b").value == 30
        assert b.relationship_to("a").value == 30

    def test_adjust_clamps(self):
        a, b = _pair()
        cast = {"a": a, "b": b}
        adjust_relationship(cast, "a", "b", 250)
        assert a.relationship_to("b").value == 100
        adjust_relationship(cast, "b", "a", -400)
        assert a.relationship_to("b").value == -100
        assert b.relationship_to("a").value == -100

    def test_missing_edge_is_created(self):
        a = Character(id="a", name="Ada")
        b = Character(id="b", name="Bram")
        adjust_relationship({"a": a, "b": b}, "a", "b", -10)
        assert a.relationship_to("b").value == -10
        assert b.relationship_to("a").value == -10

    def test_unknown_character_ignored(self):
        a, b = _pair()
        assert adjust_relationship({"a": a, "b": b}, "a", "ghost", 10) is None
        assert a.relationship_to("ghost") is None

    def test_newcomer_linked_to_everyone(self):
        a, b = _pair()
        c = Character(id="c", name="Cole")
        link_new_character([a, b], c)
        assert {e.target_character_id for e in c.relationships} == {"a", "b"}
        assert a.relationship_to("c").value == 0
        assert b.relationship_to("c").value == 0

    def test_prune_removes_edges(self):
        a, b = _pair()
        remaining = prune_character([a, b], "b")
        assert remaining == [a]
        assert a.relationship_to("b") is None

    def test_threshold_crossing(self):
        assert crossed_threshold(70, 80) == RelationshipTier.BELOVED
        assert crossed_threshold(-70, -75) == RelationshipTier.HATED
        assert crossed_threshold(80, 90) is None
        assert crossed_threshold(10, 20) is None


class TestReset:
    def test_restores_defaults_and_keeps_edges(self):
        a, b = _pair()
        a.default_stats = DefaultStats(health=80, money=5, happiness=60, items=[Item(name="Map")])
        a.health, a.money, a.happiness = 10, 99, 1
        a.level, a.xp, a.unspent_stat_points = 3, 250, 2
        a.skills = ["Swimming"]
        a.current_scenario = Scenario(description="Lost at sea")
        adjust_relationship({"a": a, "b": b}, "a", "b", 40)

        reset(a)

        assert (a.health, a.money, a.happiness) == (80, 5, 60)
        assert [i.name for i in a.items] == ["Map"]
        assert (a.level, a.xp, a.unspent_stat_points) == (1, 0, 0)
        assert a.skills == []
        assert a.current_scenario is None
        assert a.relationship_to("b").value == 0
