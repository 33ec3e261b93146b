from datetime import date

import pytest

from pcopeople.core.exceptions import MatchNotFoundError
from pcopeople.core.matching.scoring import MatchScorer
from pcopeople.core.services.person_matcher import PersonMatcher
from pcopeople.domain.models.matching import PersonMatchCriteria
from pcopeople.domain.models.resources import Resource, ResourceList


@pytest.fixture
def matcher(people_directory) -> PersonMatcher:
    return PersonMatcher(people_directory, scorer=MatchScorer(today=lambda: date(2026, 10, 19)))


def search_by(mapping):
    """Builds a `search` side effect answering per keyword argument."""
    async def search(**kwargs):
        for key, value in kwargs.items():
            if value is not None and (key, value) in mapping:
                result = mapping[(key, value)]
                if isinstance(result, Exception):
                    raise result
                return ResourceList(data=list(result))
        return ResourceList()
    return search


@pytest.mark.asyncio
async def test_email_match_is_resolved(matcher: PersonMatcher, people_directory, make_person):
    ada = make_person("1", "Ada", "Lovelace")
    people_directory.search.side_effect = search_by({("email", "ada@example.com"): [ada]})

    match = await matcher.find_match(PersonMatchCriteria(email="ada@example.com"))

    assert match.person is ada
    assert match.score == pytest.approx(0.85)
    assert match.reason == "exact email match"
    people_directory.search.assert_awaited_once_with(email="ada@example.com")


@pytest.mark.asyncio
async def test_candidates_are_merged_across_searches(matcher: PersonMatcher, people_directory, make_person):
    ada = make_person("1", "Ada", "Lovelace")
    grace = make_person("2", "Grace", "Hopper")
    people_directory.search.side_effect = search_by({
        ("email", "ada@example.com"): [ada],
        ("phone", "555-0100"): [grace, ada],
    })
    criteria = PersonMatchCriteria(email="ada@example.com", phone="555-0100")

    ranked = await matcher.get_all_matches(criteria)

    assert [c.person.id for c in ranked] == ["1", "2"]
    assert ranked[0].reason == "exact email match, exact phone match"
    assert ranked[0].score == pytest.approx((0.35 + 0.25 + 0.075) / 0.75)


@pytest.mark.asyncio
async def test_ranking_is_idempotent(matcher: PersonMatcher, people_directory, make_person):
    people = [make_person(str(i), "Ada", "Lovelace" if i % 2 else "Byron") for i in range(4)]
    people_directory.search.side_effect = search_by({("name", "Ada Lovelace"): people})
    criteria = PersonMatchCriteria(first_name="Ada", last_name="Lovelace")

    first = await matcher.get_all_matches(criteria)
    second = await matcher.get_all_matches(criteria)

    assert [(c.person.id, c.score) for c in first] == [(c.person.id, c.score) for c in second]
    # Equal scores keep the order the directory returned them in
    assert [c.person.id for c in first] == ["1", "3", "0", "2"]


@pytest.mark.asyncio
async def test_broad_search_runs_when_nothing_else_matched(matcher: PersonMatcher, people_directory, make_person):
    ada = make_person("1", "Ada", "King")
    people_directory.search.side_effect = search_by({("name", "Ada"): [ada]})

    ranked = await matcher.get_all_matches(PersonMatchCriteria(first_name="Ada", last_name="Lovelace"))

    assert [c.person.id for c in ranked] == ["1"]
    assert [call.kwargs for call in people_directory.search.await_args_list] == [
        {"name": "Ada Lovelace"},
        {"name": "Ada"},
    ]


@pytest.mark.asyncio
async def test_failing_search_is_skipped(matcher: PersonMatcher, people_directory, make_person):
    ada = make_person("1", "Ada", "Lovelace")
    people_directory.search.side_effect = search_by({
        ("email", "ada@example.com"): RuntimeError("search unavailable"),
        ("phone", "555-0100"): [ada],
    })

    criteria = PersonMatchCriteria(first_name="Ada", last_name="Lovelace", email="ada@example.com", phone="555-0100")

    match = await matcher.find_match(criteria)

    assert match.person is ada
    assert match.reason == "exact phone match, exact name match"


@pytest.mark.asyncio
async def test_exact_strategy_rejects_weak_candidates(matcher: PersonMatcher, people_directory, make_person):
    people_directory.search.side_effect = search_by({("name", "Ada Lovelace"): [make_person("1", "Ada", "Byron")]})
    criteria = PersonMatchCriteria(first_name="Ada", last_name="Lovelace", match_strategy="exact")

    assert await matcher.find_match(criteria) is None


@pytest.mark.asyncio
async def test_find_or_create_creates_with_primary_contacts(matcher: PersonMatcher, people_directory):
    created = Resource(type="Person", id="99")
    people_directory.create.return_value = created
    criteria = PersonMatchCriteria(
        first_name="Ada", last_name="Lovelace", email="ada@example.com", phone="555-0100", birthdate="1990-06-15"
    )

    person = await matcher.find_or_create(criteria)

    assert person is created
    people_directory.create.assert_awaited_once_with(
        {"first_name": "Ada", "last_name": "Lovelace", "birthdate": "1990-06-15"}
    )
    people_directory.add_email.assert_awaited_once_with("99", {"address": "ada@example.com", "primary": True})
    people_directory.add_phone_number.assert_awaited_once_with("99", {"number": "555-0100", "primary": True})


@pytest.mark.asyncio
async def test_find_or_create_returns_existing_match(matcher: PersonMatcher, people_directory, make_person):
    ada = make_person("1", "Ada", "Lovelace")
    people_directory.search.side_effect = search_by({("email", "ada@example.com"): [ada]})

    assert await matcher.find_or_create(PersonMatchCriteria(email="ada@example.com")) is ada
    people_directory.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_find_or_create_without_creation_raises(matcher: PersonMatcher, people_directory):
    with pytest.raises(MatchNotFoundError):
        await matcher.find_or_create(PersonMatchCriteria(email="nobody@example.com", create_if_not_found=False))
    people_directory.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_is_match_requires_score_above_half(matcher: PersonMatcher, people_directory, make_person):
    ada = make_person("1", "Ada", "Lovelace")
    people_directory.get_by_id.return_value = ada
    people_directory.search.side_effect = search_by({("name", "Ada Lovelace"): [ada]})

    assert (await matcher.is_match("1", PersonMatchCriteria(first_name="Ada", last_name="Lovelace"))) is not None
    # Half the name matches: exactly 0.5, which is not enough
    assert await matcher.is_match("1", PersonMatchCriteria(first_name="Ada", last_name="Byron")) is None
