from fastapi import APIRouter, Request

router = APIRouter(prefix="/election", tags=["Election"])


def _election_out(election, now) -> dict:
    data = election.model_dump(mode="json")
    data["is_active"] = election.is_active(now)
    return data


@router.get("/all")
def get_all_elections(request: Request):
    catalog = request.app.state.catalog
    now = request.app.state.clock()
    return {"elections": [_election_out(e, now) for e in catalog.list_elections()]}


@router.get("/{election_id}")
def get_election(election_id: int, request: Request):
    election = request.app.state.catalog.get_election(election_id)
    return _election_out(election, request.app.state.clock())


@router.get("/{election_id}/results")
def get_results(election_id: int, request: Request):
    election = request.app.state.catalog.get_election(election_id)
    counts = request.app.state.ledger.vote_counts(election_id)
    results = [
        {"candidate_id": c.id, "name": c.name, "party": c.party, "count": counts.get(c.id, 0)}
        for c in election.candidates
    ]
    results.sort(key=lambda r: r["count"], reverse=True)
    return {"election_id": election_id, "total": sum(counts.values()), "results": results}
