"""Tests for the vote ledger and live aggregates."""

import asyncio

import pytest

from app.errors import NotFoundError
from app.models.vote import VoteType
from app.schemas.idea import IdeaSort
from app.services.ideas import IdeaRepository
from app.services.users import UserRepository
from app.services.votes import VoteAggregates, VoteLedger

from tests.conftest import make_idea, make_user, seed


async def vote_rows(executor, idea_id):
    result = await executor.query("SELECT * FROM votes WHERE idea_id = $1", [idea_id])
    return result.rows


async def stored_vote_count(executor, idea_id):
    idea = await IdeaRepository(executor).find_by_id(idea_id, include_author=False)
    return idea.vote_count


class TestCast:
    def test_recast_same_type_keeps_one_row(self, run_db):
        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            ledger = VoteLedger(executor)
            first = await ledger.cast(voter.id, idea.id, VoteType.upvote)
            second = await ledger.cast(voter.id, idea.id, VoteType.upvote)

            rows = await vote_rows(executor, idea.id)
            assert len(rows) == 1
            assert rows[0]["vote_type"] == "upvote"
            assert second.id == first.id

        run_db(scenario)

    def test_recast_other_type_overwrites(self, run_db):
        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            ledger = VoteLedger(executor)
            await ledger.cast(voter.id, idea.id, "upvote")
            vote = await ledger.cast(voter.id, idea.id, "downvote")

            assert vote.vote_type is VoteType.downvote
            assert vote.user_id == voter.id
            assert vote.idea_id == idea.id
            assert len(await vote_rows(executor, idea.id)) == 1

        run_db(scenario)

    def test_invalid_vote_type(self, run_db):
        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            with pytest.raises(ValueError):
                await VoteLedger(executor).cast(voter.id, idea.id, "sideways")
            assert await vote_rows(executor, idea.id) == []

        run_db(scenario)


class TestSwitchAndRemove:
    def test_switch_flips_and_returns(self, run_db):
        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            ledger = VoteLedger(executor)
            await ledger.cast(voter.id, idea.id, "downvote")

            switched = await ledger.switch(voter.id, idea.id)
            assert switched.vote_type is VoteType.upvote
            assert (await ledger.find(voter.id, idea.id)).vote_type is VoteType.upvote

            switched = await ledger.switch(voter.id, idea.id)
            assert switched.vote_type is VoteType.downvote

        run_db(scenario)

    def test_switch_without_vote(self, run_db):
        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            with pytest.raises(NotFoundError) as excinfo:
                await VoteLedger(executor).switch(voter.id, idea.id)
            assert excinfo.value.code == "NO_VOTE_TO_SWITCH"

        run_db(scenario)

    def test_remove_without_vote(self, run_db):
        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            with pytest.raises(NotFoundError) as excinfo:
                await VoteLedger(executor).remove(voter.id, idea.id)
            assert excinfo.value.code == "NO_VOTE_FOUND"

        run_db(scenario)

    def test_remove_excludes_vote_from_stats(self, run_db):
        async def scenario(executor):
            author, (first, second), idea = await seed(executor)
            ledger = VoteLedger(executor)
            await ledger.cast(first.id, idea.id, "upvote")
            await ledger.cast(second.id, idea.id, "upvote")
            await ledger.remove(first.id, idea.id)

            stats = await VoteAggregates(executor).stats_for(idea.id)
            assert (stats.upvotes, stats.downvotes, stats.total) == (1, 0, 1)
            assert not await ledger.has_voted(first.id, idea.id)

        run_db(scenario)

    @pytest.mark.parametrize("operation", ["cast", "switch", "remove"])
    def test_missing_idea_fails_fast(self, run_db, operation):
        async def scenario(executor):
            voter = await make_user(executor, "voter")
            ledger = VoteLedger(executor)
            args = (voter.id, 404, "upvote") if operation == "cast" else (voter.id, 404)
            with pytest.raises(NotFoundError) as excinfo:
                await getattr(ledger, operation)(*args)
            assert excinfo.value.code == "IDEA_NOT_FOUND"
            assert (await executor.query("SELECT COUNT(*) AS n FROM votes")).first()["n"] == 0

        run_db(scenario)


class TestStats:
    def test_one_up_one_down(self, run_db):
        async def scenario(executor):
            author, (first, second), idea = await seed(executor)
            ledger = VoteLedger(executor)
            await ledger.cast(first.id, idea.id, "upvote")
            await ledger.cast(second.id, idea.id, "downvote")

            stats = await VoteAggregates(executor).stats_for(idea.id)
            assert stats.model_dump(exclude_unset=True) == {"upvotes": 1, "downvotes": 1, "total": 0}

        run_db(scenario)

    def test_cast_switch_remove_scenario(self, run_db):
        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            ledger = VoteLedger(executor)
            aggregates = VoteAggregates(executor)

            await ledger.cast(voter.id, idea.id, "upvote")
            stats = await aggregates.stats_for(idea.id, voter.id)
            assert stats.model_dump(by_alias=True, mode="json") == {
                "upvotes": 1, "downvotes": 0, "total": 1, "userVote": "upvote",
            }

            await ledger.switch(voter.id, idea.id)
            stats = await aggregates.stats_for(idea.id, voter.id)
            assert stats.model_dump(by_alias=True, mode="json") == {
                "upvotes": 0, "downvotes": 1, "total": -1, "userVote": "downvote",
            }

            await ledger.remove(voter.id, idea.id)
            stats = await aggregates.stats_for(idea.id, voter.id)
            assert stats.model_dump(by_alias=True, mode="json") == {
                "upvotes": 0, "downvotes": 0, "total": 0, "userVote": None,
            }

        run_db(scenario)

    def test_stats_for_idea_without_votes(self, run_db):
        async def scenario(executor):
            author, voters, idea = await seed(executor)
            stats = await VoteAggregates(executor).stats_for(idea.id)
            assert (stats.upvotes, stats.downvotes, stats.total) == (0, 0, 0)
            assert "user_vote" not in stats.model_fields_set

        run_db(scenario)

    def test_top_voted_uses_live_tallies(self, run_db):
        async def scenario(executor):
            author, (first, second), liked = await seed(executor)
            disliked = await make_idea(executor, author.id, title="Mandatory Monday meetings")
            ledger = VoteLedger(executor)
            await ledger.cast(first.id, liked.id, "upvote")
            await ledger.cast(second.id, liked.id, "upvote")
            await ledger.cast(first.id, disliked.id, "downvote")

            top = await VoteAggregates(executor).top_voted(limit=5)
            assert [(t.idea_id, t.vote_count) for t in top] == [(liked.id, 2), (disliked.id, -1)]

        run_db(scenario)

    def test_votes_by_user_and_idea(self, run_db):
        async def scenario(executor):
            author, (first, second), idea = await seed(executor)
            other = await make_idea(executor, author.id, title="Standing desks for all")
            ledger = VoteLedger(executor)
            await ledger.cast(first.id, idea.id, "upvote")
            await ledger.cast(first.id, other.id, "downvote")
            await ledger.cast(second.id, idea.id, "downvote")

            mine = await ledger.votes_by_user(first.id)
            assert {v.idea_id for v in mine} == {idea.id, other.id}
            assert len(await ledger.votes_by_user(first.id, limit=1)) == 1
            assert {v.user_id for v in await ledger.votes_by_idea(idea.id)} == {first.id, second.id}
            assert await ledger.vote_type_for(second.id, idea.id) is VoteType.downvote
            assert await ledger.vote_type_for(second.id, other.id) is None

        run_db(scenario)


class TestDenormalisedCount:
    def test_vote_count_follows_every_mutation(self, run_db):
        async def scenario(executor):
            author, (first, second), idea = await seed(executor)
            ledger = VoteLedger(executor)

            await ledger.cast(first.id, idea.id, "upvote")
            await ledger.cast(second.id, idea.id, "upvote")
            assert await stored_vote_count(executor, idea.id) == 2

            await ledger.switch(second.id, idea.id)
            assert await stored_vote_count(executor, idea.id) == 0

            await ledger.remove(first.id, idea.id)
            assert await stored_vote_count(executor, idea.id) == -1

        run_db(scenario)

    def test_sort_by_votes_agrees_with_live_totals(self, run_db):
        async def scenario(executor):
            author, (first, second), low = await seed(executor)
            high = await make_idea(executor, author.id, title="Four day work week")
            ledger = VoteLedger(executor)
            await ledger.cast(first.id, high.id, "upvote")
            await ledger.cast(second.id, high.id, "upvote")
            await ledger.cast(first.id, low.id, "downvote")

            page = await IdeaRepository(executor).find_all(sort=IdeaSort(sort_by="votes", sort_order="desc"))
            aggregates = VoteAggregates(executor)
            live = [(await aggregates.stats_for(i.id)).total for i in page.ideas]
            assert [i.id for i in page.ideas] == [high.id, low.id]
            assert [i.vote_count for i in page.ideas] == live == [2, -1]

        run_db(scenario)

    def test_deleting_a_voter_resyncs_counts(self, run_db):
        async def scenario(executor):
            author, (first, second), idea = await seed(executor)
            ledger = VoteLedger(executor)
            await ledger.cast(first.id, idea.id, "upvote")
            await ledger.cast(second.id, idea.id, "upvote")

            assert await UserRepository(executor).delete(first.id)
            assert len(await vote_rows(executor, idea.id)) == 1
            assert await stored_vote_count(executor, idea.id) == 1

        run_db(scenario)

    def test_deleting_an_idea_cascades_to_votes(self, run_db):
        async def scenario(executor):
            author, (first, _), idea = await seed(executor)
            await VoteLedger(executor).cast(first.id, idea.id, "upvote")
            assert await IdeaRepository(executor).delete(idea.id)
            assert await vote_rows(executor, idea.id) == []

        run_db(scenario)


class TestConcurrency:
    def test_concurrent_casts_from_different_users(self, run_db):
        async def scenario(executor):
            author, (first, second), idea = await seed(executor)
            ledger = VoteLedger(executor)
            await asyncio.gather(
                ledger.cast(first.id, idea.id, "upvote"),
                ledger.cast(second.id, idea.id, "downvote"),
            )
            stats = await VoteAggregates(executor).stats_for(idea.id)
            assert (stats.upvotes, stats.downvotes, stats.total) == (1, 1, 0)

        run_db(scenario)

    def test_concurrent_casts_from_one_user_leave_one_row(self, run_db):
        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            ledger = VoteLedger(executor)
            await asyncio.gather(
                ledger.cast(voter.id, idea.id, "upvote"),
                ledger.cast(voter.id, idea.id, "downvote"),
            )
            rows = await vote_rows(executor, idea.id)
            assert len(rows) == 1
            assert rows[0]["vote_type"] in ("upvote", "downvote")
            assert await stored_vote_count(executor, idea.id) in (1, -1)

        run_db(scenario)

    def test_concurrent_switches_both_apply(self, run_db):
        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            ledger = VoteLedger(executor)
            await ledger.cast(voter.id, idea.id, "upvote")

            results = await asyncio.gather(
                ledger.switch(voter.id, idea.id),
                ledger.switch(voter.id, idea.id),
            )
            assert sorted(v.vote_type.value for v in results) == ["downvote", "upvote"]
            assert await ledger.vote_type_for(voter.id, idea.id) is VoteType.upvote

        run_db(scenario)

    def test_hand_rolled_switch_loses_a_toggle_silently(self, run_db):
        """
        Two switches written as find() then cast() interleave, and one toggle
        is overwritten with no error raised.  switch() issues a single UPDATE so
        it cannot lose a toggle (see test_concurrent_switches_both_apply).
        """

        async def scenario(executor):
            author, (voter, _), idea = await seed(executor)
            ledger = VoteLedger(executor)
            await ledger.cast(voter.id, idea.id, "upvote")

            seen = []
            both_read = asyncio.Event()

            async def read_then_cast():
                current = await ledger.find(voter.id, idea.id)
                seen.append(current.vote_type)
                if len(seen) == 2:
                    both_read.set()
                await both_read.wait()
                flipped = "downvote" if current.vote_type is VoteType.upvote else "upvote"
                await ledger.cast(voter.id, idea.id, flipped)

            await asyncio.gather(read_then_cast(), read_then_cast())

            assert seen == [VoteType.upvote, VoteType.upvote]
            # two toggles requested, one observed
            assert await ledger.vote_type_for(voter.id, idea.id) is VoteType.downvote

        run_db(scenario)
