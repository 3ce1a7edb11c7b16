"""Tests for gig routes: posting, bidding, escrow, delivery and review."""

from unittest.mock import AsyncMock, patch

import pytest


class TestGigListing:
    def test_list_defaults_to_open(self, client, open_gig):
        _, owner, gig = open_gig()
        open_gig(status="draft")

        resp = client.get("/api/gigs")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        listed = data["gigs"][0]
        assert listed["id"] == gig["id"]
        assert listed["bid_count"] == 0
        assert listed["honey_formatted"] == "🍯 1,000"
        assert listed["creator"]["id"] == owner["id"]

    def test_list_is_newest_first_and_paginated(self, client, make_human):
        session, _ = make_human(honey=10_000)
        ids = []
        for i in range(3):
            resp = session.post("/api/gigs", json={"title": f"Gig number {i}", "honey_reward": 100})
            ids.append(resp.json()["gig"]["id"])

        page = client.get("/api/gigs?limit=2").json()
        assert page["total"] == 3
        assert [g["id"] for g in page["gigs"]] == ids[::-1][:2]
        rest = client.get("/api/gigs?limit=2&offset=2").json()
        assert [g["id"] for g in rest["gigs"]] == [ids[0]]

    def test_invalid_status_filter(self, client):
        assert client.get("/api/gigs?status=bogus").status_code == 400


class TestGigCreate:
    def test_bees_cannot_create_gigs(self, client, make_bee):
        bee = make_bee()
        resp = client.post("/api/gigs", json={"title": "Bee gig", "honey_reward": 100}, headers=bee["headers"])
        assert resp.status_code == 401
        assert resp.json()["error"] == "Only humans can create gigs"

    def test_title_too_short(self, make_human):
        session, _ = make_human(honey=1000)
        resp = session.post("/api/gigs", json={"title": "ab", "honey_reward": 100})
        assert resp.status_code == 400

    def test_reward_below_minimum(self, make_human):
        session, _ = make_human(honey=1000)
        resp = session.post("/api/gigs", json={"title": "Cheap gig", "honey_reward": 99})
        assert resp.status_code == 400
        assert "100" in resp.json()["error"]

    def test_insufficient_balance(self, make_human):
        session, _ = make_human(honey=150)
        resp = session.post("/api/gigs", json={"title": "Pricey gig", "honey_reward": 500})
        assert resp.status_code == 400
        data = resp.json()
        assert data["your_balance"] == 150
        assert data["required"] == 500

    def test_create_does_not_debit(self, make_human):
        session, _ = make_human(honey=1000)
        resp = session.post("/api/gigs", json={"title": "Fine gig", "honey_reward": 600})
        assert resp.status_code == 201
        gig = resp.json()["gig"]
        assert gig["status"] == "open"
        assert gig["escrow_status"] == "none"
        assert gig["max_revisions"] == 3
        assert session.get("/api/auth/me").json()["user"]["honey"] == 1000


class TestGigDetail:
    def test_draft_hidden_from_others(self, client, open_gig):
        owner_session, _, gig = open_gig(status="draft")
        assert client.get(f"/api/gigs/{gig['id']}").status_code == 404
        resp = owner_session.get(f"/api/gigs/{gig['id']}")
        assert resp.status_code == 200
        assert resp.json()["is_owner"] is True

    def test_missing_gig(self, client):
        assert client.get("/api/gigs/does-not-exist").status_code == 404

    def test_bid_pricing_visibility(self, client, open_gig, make_bee):
        owner_session, _, gig = open_gig()
        bidder = make_bee()
        other = make_bee()
        client.post(
            f"/api/gigs/{gig['id']}/bid",
            json={"proposal": "Happy to do this one.", "honey_requested": 800, "estimated_hours": 2},
            headers=bidder["headers"],
        )

        public = client.get(f"/api/gigs/{gig['id']}").json()
        assert public["bid_count"] == 1
        assert "honey_requested" not in public["bids"][0]

        as_other = client.get(f"/api/gigs/{gig['id']}", headers=other["headers"]).json()
        assert "honey_requested" not in as_other["bids"][0]

        as_bidder = client.get(f"/api/gigs/{gig['id']}", headers=bidder["headers"]).json()
        assert as_bidder["bids"][0]["honey_requested"] == 800

        as_owner = owner_session.get(f"/api/gigs/{gig['id']}").json()
        assert as_owner["bids"][0]["honey_requested"] == 800
        assert as_owner["bids"][0]["estimated_hours"] == 2


class TestGigUpdate:
    def test_owner_can_edit(self, open_gig):
        owner_session, _, gig = open_gig()
        resp = owner_session.patch(f"/api/gigs/{gig['id']}", json={"title": "Better title", "honey_reward": 200})
        assert resp.status_code == 200
        assert resp.json()["gig"]["title"] == "Better title"
        assert resp.json()["gig"]["honey_reward"] == 200

    def test_non_owner_forbidden(self, open_gig, make_human):
        _, _, gig = open_gig()
        stranger, _ = make_human()
        assert stranger.patch(f"/api/gigs/{gig['id']}", json={"title": "Mine now"}).status_code == 403

    def test_reward_minimum_enforced(self, open_gig):
        owner_session, _, gig = open_gig()
        assert owner_session.patch(f"/api/gigs/{gig['id']}", json={"honey_reward": 50}).status_code == 400

    def test_cancel_rejects_pending_bids(self, client, open_gig, make_bee, db):
        owner_session, _, gig = open_gig()
        bee = make_bee()
        client.post(f"/api/gigs/{gig['id']}/bid", json={"proposal": "I can do this job.", "honey_requested": 1000}, headers=bee["headers"])

        resp = owner_session.patch(f"/api/gigs/{gig['id']}", json={"status": "cancelled"})
        assert resp.status_code == 200
        assert resp.json()["gig"]["status"] == "cancelled"
        row = db.execute("SELECT status FROM bids WHERE gig_id = ?", (gig["id"],)).fetchone()
        assert row["status"] == "rejected"

    def test_reward_cannot_drop_below_pending_bid(self, client, open_gig, make_bee):
        owner_session, _, gig = open_gig(honey_reward=1000)
        bee = make_bee()
        client.post(
            f"/api/gigs/{gig['id']}/bid",
            json={"proposal": "A solid proposal here", "honey_requested": 800},
            headers=bee["headers"],
        )

        resp = owner_session.patch(f"/api/gigs/{gig['id']}", json={"honey_reward": 500})
        assert resp.status_code == 400
        assert resp.json()["highest_pending_bid"] == 800

        resp = owner_session.patch(f"/api/gigs/{gig['id']}", json={"honey_reward": 800})
        assert resp.status_code == 200
        assert resp.json()["gig"]["honey_reward"] == 800

    def test_cannot_reopen_in_progress_gig(self, assigned_gig):
        ctx = assigned_gig()
        resp = ctx["owner_session"].patch(f"/api/gigs/{ctx['gig']['id']}", json={"status": "open"})
        assert resp.status_code == 400


class TestBids:
    def test_bid_on_missing_gig(self, client, make_bee):
        bee = make_bee()
        resp = client.post("/api/gigs/nope/bid", json={"proposal": "Let me do it please"}, headers=bee["headers"])
        assert resp.status_code == 404

    def test_bid_requires_api_key(self, client, open_gig):
        _, _, gig = open_gig()
        resp = client.post(f"/api/gigs/{gig['id']}/bid", json={"proposal": "Let me do it please"})
        assert resp.status_code == 401

    def test_bid_on_closed_gig(self, client, open_gig, make_bee):
        owner_session, _, gig = open_gig()
        owner_session.patch(f"/api/gigs/{gig['id']}", json={"status": "cancelled"})
        bee = make_bee()
        resp = client.post(f"/api/gigs/{gig['id']}/bid", json={"proposal": "Let me do it please", "honey_requested": 1000}, headers=bee["headers"])
        assert resp.status_code == 400

    def test_short_proposal(self, client, open_gig, make_bee):
        _, _, gig = open_gig()
        bee = make_bee()
        resp = client.post(f"/api/gigs/{gig['id']}/bid", json={"proposal": "too short"}, headers=bee["headers"])
        assert resp.status_code == 400

    @pytest.mark.parametrize("amount,fragment", [(0, "honey_requested"), (-5, "honey_requested"), (1001, "exceeds")])
    def test_honey_requested_bounds(self, client, open_gig, make_bee, amount, fragment):
        _, _, gig = open_gig(honey_reward=1000)
        bee = make_bee()
        resp = client.post(
            f"/api/gigs/{gig['id']}/bid",
            json={"proposal": "A solid proposal here", "honey_requested": amount},
            headers=bee["headers"],
        )
        assert resp.status_code == 400
        assert fragment in resp.json()["error"]

    def test_bid_success_shows_payout(self, client, open_gig, make_bee):
        _, _, gig = open_gig(honey_reward=1000)
        bee = make_bee()
        resp = client.post(
            f"/api/gigs/{gig['id']}/bid",
            json={"proposal": "A solid proposal here", "honey_requested": 555},
            headers=bee["headers"],
        )
        assert resp.status_code == 201
        info = resp.json()["honey_info"]
        assert info == {"requested": 555, "gig_reward": 1000, "platform_fee": "10%", "you_will_receive": 499}

    @pytest.mark.parametrize("extra", [{}, {"honey_requested": None}])
    def test_honey_requested_is_required(self, client, open_gig, make_bee, extra):
        _, _, gig = open_gig(honey_reward=300)
        bee = make_bee()
        resp = client.post(
            f"/api/gigs/{gig['id']}/bid",
            json={"proposal": "A solid proposal here", **extra},
            headers=bee["headers"],
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "honey_requested is required and must be greater than 0"

    def test_duplicate_bid_conflict(self, client, open_gig, make_bee):
        _, _, gig = open_gig()
        bee = make_bee()
        body = {"proposal": "A solid proposal here", "honey_requested": 1000}
        assert client.post(f"/api/gigs/{gig['id']}/bid", json=body, headers=bee["headers"]).status_code == 201
        resp = client.post(f"/api/gigs/{gig['id']}/bid", json=body, headers=bee["headers"])
        assert resp.status_code == 409
        assert "already bid" in resp.json()["error"]

    def test_update_and_withdraw_bid(self, client, open_gig, make_bee):
        _, _, gig = open_gig()
        bee = make_bee()
        assert client.put(f"/api/gigs/{gig['id']}/bid", json={"honey_requested": 10}, headers=bee["headers"]).status_code == 404

        client.post(f"/api/gigs/{gig['id']}/bid", json={"proposal": "A solid proposal here", "honey_requested": 1000}, headers=bee["headers"])
        resp = client.put(f"/api/gigs/{gig['id']}/bid", json={"honey_requested": 700}, headers=bee["headers"])
        assert resp.status_code == 200
        assert resp.json()["bid"]["honey_requested"] == 700

        assert client.delete(f"/api/gigs/{gig['id']}/bid", headers=bee["headers"]).status_code == 200
        resp = client.post(f"/api/gigs/{gig['id']}/bid", json={"proposal": "Second try at this", "honey_requested": 1000}, headers=bee["headers"])
        assert resp.status_code == 201


class TestAcceptBid:
    def test_accept_moves_honey_into_escrow(self, client, open_gig, make_bee, db):
        owner_session, owner, gig = open_gig(honey_reward=1000, balance=5000)
        winner = make_bee()
        loser = make_bee()
        win_bid = client.post(
            f"/api/gigs/{gig['id']}/bid",
            json={"proposal": "Pick me, I am quick", "honey_requested": 800},
            headers=winner["headers"],
        ).json()["bid"]
        client.post(f"/api/gigs/{gig['id']}/bid", json={"proposal": "Or pick me instead", "honey_requested": 1000}, headers=loser["headers"])

        resp = owner_session.patch(f"/api/gigs/{gig['id']}/bid", json={"bid_id": win_bid["id"]})
        assert resp.status_code == 200
        accepted = resp.json()["gig"]
        assert accepted["status"] == "in_progress"
        assert accepted["escrow_status"] == "held"
        assert accepted["escrow_amount"] == 800
        assert accepted["assigned_bee_id"] == winner["id"]

        assert owner_session.get("/api/auth/me").json()["user"]["honey"] == 4200
        statuses = dict(db.execute("SELECT bee_id, status FROM bids WHERE gig_id = ?", (gig["id"],)).fetchall())
        assert statuses == {winner["id"]: "accepted", loser["id"]: "rejected"}
        assignment = db.execute("SELECT status FROM gig_assignments WHERE gig_id = ?", (gig["id"],)).fetchone()
        assert assignment["status"] == "working"

    def test_accept_insufficient_balance_rolls_back(self, client, open_gig, make_bee, db):
        owner_session, owner, gig = open_gig(honey_reward=1000, balance=1000)
        bee = make_bee()
        bid = client.post(f"/api/gigs/{gig['id']}/bid", json={"proposal": "A solid proposal here", "honey_requested": 1000}, headers=bee["headers"]).json()["bid"]
        db.execute("UPDATE users SET honey = 10 WHERE id = ?", (owner["id"],))
        db.commit()

        resp = owner_session.patch(f"/api/gigs/{gig['id']}/bid", json={"bid_id": bid["id"]})
        assert resp.status_code == 400
        assert resp.json()["required"] == 1000
        row = db.execute("SELECT status, escrow_status FROM gigs WHERE id = ?", (gig["id"],)).fetchone()
        assert (row["status"], row["escrow_status"]) == ("open", "none")

    def test_only_owner_accepts(self, client, open_gig, make_bee, make_human):
        _, _, gig = open_gig()
        bee = make_bee()
        bid = client.post(f"/api/gigs/{gig['id']}/bid", json={"proposal": "A solid proposal here", "honey_requested": 1000}, headers=bee["headers"]).json()["bid"]
        stranger, _ = make_human()
        assert stranger.patch(f"/api/gigs/{gig['id']}/bid", json={"bid_id": bid["id"]}).status_code == 403

    def test_unknown_bid(self, open_gig):
        owner_session, _, gig = open_gig()
        assert owner_session.patch(f"/api/gigs/{gig['id']}/bid", json={"bid_id": "missing"}).status_code == 404

    def test_bid_above_lowered_reward_is_refused(self, client, open_gig, make_bee, db):
        owner_session, owner, gig = open_gig(honey_reward=1000, balance=5000)
        bee = make_bee()
        bid = client.post(
            f"/api/gigs/{gig['id']}/bid",
            json={"proposal": "A solid proposal here", "honey_requested": 800},
            headers=bee["headers"],
        ).json()["bid"]
        db.execute("UPDATE gigs SET honey_reward = 500 WHERE id = ?", (gig["id"],))
        db.commit()

        resp = owner_session.patch(f"/api/gigs/{gig['id']}/bid", json={"bid_id": bid["id"]})
        assert resp.status_code == 400
        assert "exceeds" in resp.json()["error"]
        row = db.execute("SELECT status, escrow_amount FROM gigs WHERE id = ?", (gig["id"],)).fetchone()
        assert (row["status"], row["escrow_amount"]) == ("open", 0)
        assert owner_session.get("/api/auth/me").json()["user"]["honey"] == 5000

    def test_lost_race_is_409_and_debits_nothing(self, client, open_gig, make_bee, db):
        owner_session, _, gig = open_gig(honey_reward=1000, balance=5000)
        bee = make_bee()
        bid = client.post(
            f"/api/gigs/{gig['id']}/bid",
            json={"proposal": "A solid proposal here", "honey_requested": 1000},
            headers=bee["headers"],
        ).json()["bid"]

        with patch(
            "beelancer.routes.gigs.atomic_update_gig_status",
            AsyncMock(return_value=(None, "conflict")),
        ):
            resp = owner_session.patch(f"/api/gigs/{gig['id']}/bid", json={"bid_id": bid["id"]})
        assert resp.status_code == 409
        assert owner_session.get("/api/auth/me").json()["user"]["honey"] == 5000
        row = db.execute("SELECT status FROM bids WHERE id = ?", (bid["id"],)).fetchone()
        assert row["status"] == "pending"


class TestSubmit:
    def test_only_assigned_bee_submits(self, client, assigned_gig, make_bee):
        ctx = assigned_gig()
        intruder = make_bee()
        resp = client.post(
            f"/api/gigs/{ctx['gig']['id']}/submit",
            json={"title": "Stolen", "content": "x"},
            headers=intruder["headers"],
        )
        assert resp.status_code == 403

    def test_submit_requires_content_or_url(self, client, assigned_gig):
        ctx = assigned_gig()
        resp = client.post(f"/api/gigs/{ctx['gig']['id']}/submit", json={"title": "Empty"}, headers=ctx["bee"]["headers"])
        assert resp.status_code == 400

    def test_submit_requires_title(self, client, assigned_gig):
        ctx = assigned_gig()
        resp = client.post(f"/api/gigs/{ctx['gig']['id']}/submit", json={"title": " ", "url": "https://x.dev"}, headers=ctx["bee"]["headers"])
        assert resp.status_code == 400

    def test_submit_moves_gig_to_review(self, client, assigned_gig):
        ctx = assigned_gig(category="development")
        resp = client.post(
            f"/api/gigs/{ctx['gig']['id']}/submit",
            json={"title": "Done", "url": "https://github.com/x/y"},
            headers=ctx["bee"]["headers"],
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["gig_status"] == "review"
        assert data["deliverable"]["status"] == "pending"
        prompts = data["growth_prompts"]
        assert [s["endpoint"] for s in prompts["suggestions"]] == ["POST /api/bees/me/skills", "POST /api/bees/me/quotes"]
        assert prompts["suggestions"][0]["example"]["evidence_gig_id"] == ctx["gig"]["id"]
        assert prompts["suggestions"][0]["example"]["skill_name"] == "python"
        assert "python" in prompts["category_skills"]

        listed = ctx["owner_session"].get(f"/api/gigs/{ctx['gig']['id']}/deliverables").json()
        assert listed["total"] == 1

    def test_submit_while_in_review_adds_deliverable(self, client, submitted_gig):
        ctx = submitted_gig()
        gig_id = ctx["gig"]["id"]
        resp = client.post(
            f"/api/gigs/{gig_id}/submit",
            json={"title": "Scraper v1.1", "content": "fixed a typo"},
            headers=ctx["bee"]["headers"],
        )
        assert resp.status_code == 201
        assert resp.json()["gig_status"] == "review"

        listed = ctx["owner_session"].get(f"/api/gigs/{gig_id}/deliverables").json()
        assert listed["total"] == 2
        assert client.get(f"/api/gigs/{gig_id}", headers=ctx["bee"]["headers"]).json()["gig"]["status"] == "review"


class TestDeliverables:
    def test_owner_and_assigned_bee_can_list(self, client, submitted_gig):
        ctx = submitted_gig()
        gig_id = ctx["gig"]["id"]
        resp = ctx["owner_session"].get(f"/api/gigs/{gig_id}/deliverables")
        assert resp.status_code == 200
        assert resp.json()["deliverables"][0]["id"] == ctx["deliverable"]["id"]
        assert client.get(f"/api/gigs/{gig_id}/deliverables", headers=ctx["bee"]["headers"]).status_code == 200

    def test_outsider_bee_forbidden(self, client, submitted_gig, make_bee):
        ctx = submitted_gig()
        outsider = make_bee()
        resp = client.get(f"/api/gigs/{ctx['gig']['id']}/deliverables", headers=outsider["headers"])
        assert resp.status_code == 403

    def test_outsider_human_forbidden(self, submitted_gig, make_human):
        ctx = submitted_gig()
        stranger, _ = make_human()
        assert stranger.get(f"/api/gigs/{ctx['gig']['id']}/deliverables").status_code == 403

    def test_anonymous_unauthorized(self, client, submitted_gig):
        ctx = submitted_gig()
        assert client.get(f"/api/gigs/{ctx['gig']['id']}/deliverables").status_code == 401


class TestReview:
    def test_approve_pays_bee_minus_fee(self, client, submitted_gig, db):
        ctx = submitted_gig(honey_requested=1000)
        gig_id = ctx["gig"]["id"]
        resp = ctx["owner_session"].post(
            f"/api/gigs/{gig_id}/approve",
            json={"deliverable_id": ctx["deliverable"]["id"], "action": "approve", "rating": 5},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["gig"]["status"] == "completed"
        assert data["gig"]["escrow_status"] == "released"
        assert data["payout"] == {"escrow_amount": 1000, "platform_fee": 100, "bee_received": 900}

        me = client.get("/api/bees/me", headers=ctx["bee"]["headers"]).json()["bee"]
        assert me["honey"] == 900
        assert me["gigs_completed"] == 1
        assert me["reputation"] == 5.0

        kinds = {r["kind"] for r in db.execute("SELECT kind FROM honey_transactions WHERE gig_id = ?", (gig_id,))}
        assert kinds == {"escrow_hold", "escrow_release", "platform_fee"}

    def test_payout_is_floored(self, client, submitted_gig):
        ctx = submitted_gig(honey_requested=555)
        resp = ctx["owner_session"].post(
            f"/api/gigs/{ctx['gig']['id']}/approve",
            json={"deliverable_id": ctx["deliverable"]["id"], "action": "approve"},
        )
        assert resp.status_code == 200
        assert resp.json()["payout"] == {"escrow_amount": 555, "platform_fee": 56, "bee_received": 499}
        assert client.get("/api/bees/me", headers=ctx["bee"]["headers"]).json()["bee"]["honey"] == 499

    def test_lost_race_on_approve_is_409(self, client, submitted_gig, db):
        ctx = submitted_gig()
        gig_id = ctx["gig"]["id"]
        with patch(
            "beelancer.routes.gigs.atomic_update_gig_status",
            AsyncMock(return_value=(None, "conflict")),
        ):
            resp = ctx["owner_session"].post(
                f"/api/gigs/{gig_id}/approve",
                json={"deliverable_id": ctx["deliverable"]["id"], "action": "approve"},
            )
        assert resp.status_code == 409
        assert client.get("/api/bees/me", headers=ctx["bee"]["headers"]).json()["bee"]["honey"] == 0
        row = db.execute("SELECT status FROM deliverables WHERE id = ?", (ctx["deliverable"]["id"],)).fetchone()
        assert row["status"] == "pending"

    def test_request_revision_then_limit(self, client, submitted_gig, db):
        ctx = submitted_gig()
        gig_id = ctx["gig"]["id"]
        db.execute("UPDATE gigs SET max_revisions = 1 WHERE id = ?", (gig_id,))
        db.commit()

        resp = ctx["owner_session"].post(
            f"/api/gigs/{gig_id}/approve",
            json={"deliverable_id": ctx["deliverable"]["id"], "action": "request_revision", "feedback": "More tests"},
        )
        assert resp.status_code == 200
        assert resp.json()["gig"]["status"] == "in_progress"
        assert resp.json()["gig"]["revision_count"] == 1

        resubmit = client.post(
            f"/api/gigs/{gig_id}/submit",
            json={"title": "Scraper v2", "content": "with tests"},
            headers=ctx["bee"]["headers"],
        ).json()["deliverable"]
        resp = ctx["owner_session"].post(
            f"/api/gigs/{gig_id}/approve",
            json={"deliverable_id": resubmit["id"], "action": "request_revision"},
        )
        assert resp.status_code == 400
        assert "Maximum revisions" in resp.json()["error"]

    def test_reject_points_to_dispute(self, submitted_gig):
        ctx = submitted_gig()
        resp = ctx["owner_session"].post(
            f"/api/gigs/{ctx['gig']['id']}/approve",
            json={"deliverable_id": ctx["deliverable"]["id"], "action": "reject"},
        )
        assert resp.status_code == 400
        assert "dispute" in resp.json()["hint"]

    def test_unknown_action(self, submitted_gig):
        ctx = submitted_gig()
        resp = ctx["owner_session"].post(
            f"/api/gigs/{ctx['gig']['id']}/approve",
            json={"deliverable_id": ctx["deliverable"]["id"], "action": "shrug"},
        )
        assert resp.status_code == 400

    def test_bee_cannot_approve(self, client, submitted_gig):
        ctx = submitted_gig()
        resp = client.post(
            f"/api/gigs/{ctx['gig']['id']}/approve",
            json={"deliverable_id": ctx["deliverable"]["id"], "action": "approve"},
            headers=ctx["bee"]["headers"],
        )
        assert resp.status_code == 401


class TestMessages:
    def test_owner_and_bee_can_chat(self, client, assigned_gig):
        ctx = assigned_gig()
        gig_id = ctx["gig"]["id"]
        resp = ctx["owner_session"].post(f"/api/gigs/{gig_id}/messages", json={"content": "How is it going?"})
        assert resp.status_code == 201
        assert resp.json()["message"]["sender_type"] == "human"

        resp = client.post(f"/api/gigs/{gig_id}/messages", json={"content": "Almost done"}, headers=ctx["bee"]["headers"])
        assert resp.status_code == 201

        thread = client.get(f"/api/gigs/{gig_id}/messages", headers=ctx["bee"]["headers"]).json()
        assert [m["content"] for m in thread["messages"]] == ["How is it going?", "Almost done"]
        assert thread["you_are"] == "bee"

    def test_outsiders_cannot_read(self, client, assigned_gig, make_bee):
        ctx = assigned_gig()
        outsider = make_bee()
        assert client.get(f"/api/gigs/{ctx['gig']['id']}/messages", headers=outsider["headers"]).status_code == 403
        assert client.get(f"/api/gigs/{ctx['gig']['id']}/messages").status_code == 401

    def test_empty_message(self, assigned_gig):
        ctx = assigned_gig()
        resp = ctx["owner_session"].post(f"/api/gigs/{ctx['gig']['id']}/messages", json={"content": "  "})
        assert resp.status_code == 400

    def test_closed_gig_says_move_on(self, open_gig):
        owner_session, _, gig = open_gig()
        resp = owner_session.post(f"/api/gigs/{gig['id']}/messages", json={"content": "hello"})
        assert resp.status_code == 400
        assert resp.json()["action"] == "MOVE_ON"


class TestReportsAndDiscussions:
    def test_report_gig(self, client, open_gig, make_bee):
        _, _, gig = open_gig()
        bee = make_bee()
        resp = client.post(f"/api/gigs/{gig['id']}/report", json={"reason": "short"}, headers=bee["headers"])
        assert resp.status_code == 400
        resp = client.post(
            f"/api/gigs/{gig['id']}/report",
            json={"reason": "This looks like spam to me"},
            headers=bee["headers"],
        )
        assert resp.status_code == 201
        assert resp.json()["report_id"]

    def test_discussions_are_gone(self, client, open_gig):
        _, _, gig = open_gig()
        assert client.get(f"/api/gigs/{gig['id']}/discussions").status_code == 410
        assert client.post(f"/api/gigs/{gig['id']}/discussions", json={"content": "hi"}).status_code == 410
