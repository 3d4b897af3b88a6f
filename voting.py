from errors import ValidationError


RANK_POINTS = {1: 3, 2: 2, 3: 1}
MAX_RANK = 3


def build_ballot(participant_id, ranked_ids):
    """Turn an ordered list of recommendation ids (best first) into ballot entries."""
    if len(ranked_ids) > MAX_RANK:
        raise ValidationError(f"A ballot ranks at most {MAX_RANK} picks")
    return [
        {"participant_id": participant_id, "recommendation_id": recommendation_id, "rank": rank}
        for rank, recommendation_id in enumerate(ranked_ids, start=1)
    ]


def validate_ballot(votes, recommendation_ids):
    allowed = set(recommendation_ids)
    ranks_used = set()
    picks_used = set()
    for vote in votes:
        participant_id = vote.get("participant_id")
        recommendation_id = vote.get("recommendation_id")
        rank = vote.get("rank")
        if not participant_id:
            raise ValidationError("Each vote needs a participant id")
        if rank not in RANK_POINTS:
            raise ValidationError(f"Rank must be 1, 2 or 3; got {rank!r}")
        if recommendation_id not in allowed:
            raise ValidationError(f"{recommendation_id!r} is not on the shortlist")
        if (participant_id, rank) in ranks_used:
            raise ValidationError(f"Rank {rank} used twice")
        if (participant_id, recommendation_id) in picks_used:
            raise ValidationError(f"{recommendation_id!r} ranked twice")
        ranks_used.add((participant_id, rank))
        picks_used.add((participant_id, recommendation_id))


def voters(votes):
    return {vote["participant_id"] for vote in votes}


def calculate_voting_results(votes, recommendation_ids):
    results = [
        {"recommendation_id": recommendation_id, "total_points": 0, "vote_count": 0, "first_place_votes": 0}
        for recommendation_id in recommendation_ids
    ]
    by_id = {result["recommendation_id"]: result for result in results}

    for vote in votes:
        result = by_id.get(vote["recommendation_id"])
        if result is None:
            continue
        result["total_points"] += RANK_POINTS.get(vote["rank"], 0)
        result["vote_count"] += 1
        if vote["rank"] == 1:
            result["first_place_votes"] += 1

    results.sort(key=lambda result: result["total_points"], reverse=True)
    return results


def pick_winner(votes, recommendation_ids):
    """
    Winning recommendation id, or None when there is nothing to pick from.

    Ties on points go to more first-place votes, then more votes overall,
    then the earlier shortlist position.
    """
    if not recommendation_ids:
        return None
    results = calculate_voting_results(votes, recommendation_ids)
    position = {recommendation_id: index for index, recommendation_id in enumerate(recommendation_ids)}
    best = min(
        results,
        key=lambda result: (
            -result["total_points"],
            -result["first_place_votes"],
            -result["vote_count"],
            position[result["recommendation_id"]],
        ),
    )
    return best["recommendation_id"]
