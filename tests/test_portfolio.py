"""Tests for bee portfolios: skill claims, endorsements, reflections and testimonials."""

import pytest


@pytest.fixture
def add_claim(client):
    def _add(bee, skill_name="scraping", claim="Built resilient scrapers for docs sites", **fields):
        resp = client.post(
            "/api/bees/me/skills",
            json={"skill_name": skill_name, "claim": claim, **fields},
            headers=bee["headers"],
        )
        assert resp.status_code == 201, resp.text
        return resp.json()["skill_claim"]

    return _add


class TestSkillClaims:
    def test_add_and_list(self, client, make_bee, add_claim):
        bee = make_bee()
        claim = add_claim(bee, skill_name=" python ")
        assert claim["skill_name"] == "python"
        assert claim["endorsement_count"] == 0

        mine = client.get("/api/bees/me/skills", headers=bee["headers"]).json()
        assert [c["id"] for c in mine["skill_claims"]] == [claim["id"]]

        public = client.get(f"/api/bees/{bee['name']}/skills").json()
        assert public["bee"]["id"] == bee["id"]
        assert public["skill_claims"][0]["claim"] == "Built resilient scrapers for docs sites"

    def test_blank_claim_rejected(self, client, make_bee):
        bee = make_bee()
        resp = client.post("/api/bees/me/skills", json={"skill_name": "sql", "claim": "  "}, headers=bee["headers"])
        assert resp.status_code == 400
        assert "skill_name and claim are required" in resp.json()["error"]

    def test_requires_api_key(self, client):
        resp = client.post("/api/bees/me/skills", json={"skill_name": "sql", "claim": "Fast queries"})
        assert resp.status_code == 401

    def test_evidence_must_be_own_gig(self, client, assigned_gig, make_bee, add_claim):
        ctx = assigned_gig()
        stranger = make_bee()
        resp = client.post(
            "/api/bees/me/skills",
            json={"skill_name": "scraping", "claim": "I did this", "evidence_gig_id": ctx["gig"]["id"]},
            headers=stranger["headers"],
        )
        assert resp.status_code == 400

        claim = add_claim(ctx["bee"], evidence_gig_id=ctx["gig"]["id"])
        assert claim["gig_title"] == ctx["gig"]["title"]

    def test_delete_own_claim_only(self, client, make_bee, add_claim):
        bee = make_bee()
        other = make_bee()
        claim = add_claim(bee)

        assert client.delete("/api/bees/me/skills", headers=bee["headers"]).status_code == 400
        resp = client.delete(f"/api/bees/me/skills?id={claim['id']}", headers=other["headers"])
        assert resp.status_code == 404

        resp = client.delete(f"/api/bees/me/skills?id={claim['id']}", headers=bee["headers"])
        assert resp.status_code == 200
        assert client.get("/api/bees/me/skills", headers=bee["headers"]).json()["skill_claims"] == []


class TestEndorsements:
    def test_bee_and_human_endorse(self, client, make_bee, make_human, add_claim):
        bee = make_bee()
        fan = make_bee()
        human_session, _ = make_human()
        claim = add_claim(bee)
        path = f"/api/bees/{bee['id']}/skills/{claim['id']}/endorse"

        resp = client.post(path, headers=fan["headers"])
        assert resp.status_code == 201
        assert resp.json()["endorsement_count"] == 1

        resp = human_session.post(path)
        assert resp.status_code == 201
        assert resp.json()["endorsement_count"] == 2

        endorsers = client.get(path).json()
        assert endorsers["total"] == 2
        assert {e["type"] for e in endorsers["endorsers"]} == {"bee", "human"}
        assert fan["name"] in {e["name"] for e in endorsers["endorsers"]}

    def test_most_endorsed_claim_listed_first(self, client, make_bee, add_claim):
        bee = make_bee()
        fan = make_bee()
        add_claim(bee, skill_name="sql", claim="Tuned slow reporting queries")
        popular = add_claim(bee, skill_name="scraping")
        client.post(f"/api/bees/{bee['id']}/skills/{popular['id']}/endorse", headers=fan["headers"])

        claims = client.get(f"/api/bees/{bee['id']}/skills").json()["skill_claims"]
        assert claims[0]["id"] == popular["id"]
        assert claims[0]["endorsement_count"] == 1

    def test_duplicate_endorsement_conflict(self, client, make_bee, add_claim):
        bee = make_bee()
        fan = make_bee()
        claim = add_claim(bee)
        path = f"/api/bees/{bee['id']}/skills/{claim['id']}/endorse"
        assert client.post(path, headers=fan["headers"]).status_code == 201
        resp = client.post(path, headers=fan["headers"])
        assert resp.status_code == 409
        assert resp.json()["error"] == "You have already endorsed this skill claim"

    def test_cannot_endorse_self(self, client, make_bee, add_claim):
        bee = make_bee()
        claim = add_claim(bee)
        resp = client.post(f"/api/bees/{bee['id']}/skills/{claim['id']}/endorse", headers=bee["headers"])
        assert resp.status_code == 400

    def test_anonymous_cannot_endorse(self, client, make_bee, add_claim):
        bee = make_bee()
        claim = add_claim(bee)
        resp = client.post(f"/api/bees/{bee['id']}/skills/{claim['id']}/endorse")
        assert resp.status_code == 401

    def test_claim_must_belong_to_bee(self, client, make_bee, add_claim):
        bee = make_bee()
        other = make_bee()
        fan = make_bee()
        claim = add_claim(bee)
        resp = client.post(f"/api/bees/{other['id']}/skills/{claim['id']}/endorse", headers=fan["headers"])
        assert resp.status_code == 404

    def test_remove_endorsement(self, client, make_bee, add_claim):
        bee = make_bee()
        fan = make_bee()
        claim = add_claim(bee)
        path = f"/api/bees/{bee['id']}/skills/{claim['id']}/endorse"
        client.post(path, headers=fan["headers"])

        resp = client.delete(path, headers=fan["headers"])
        assert resp.status_code == 200
        assert resp.json()["endorsement_count"] == 0
        assert client.delete(path, headers=fan["headers"]).status_code == 404
        assert client.get(path).json()["total"] == 0


class TestReflections:
    def test_add_feature_and_delete(self, client, make_bee):
        bee = make_bee()
        resp = client.post(
            "/api/bees/me/quotes",
            json={"quote_text": "Learned to ask for sample data before starting."},
            headers=bee["headers"],
        )
        assert resp.status_code == 201
        quote = resp.json()["quote"]
        assert quote["quote_type"] == "bee_reflection"
        assert quote["author_name"] == bee["name"]

        resp = client.patch("/api/bees/me/quotes", json={"quote_id": quote["id"]}, headers=bee["headers"])
        assert resp.status_code == 200
        assert resp.json()["is_featured"] is True
        mine = client.get("/api/bees/me/quotes", headers=bee["headers"]).json()
        assert mine["quotes"][0]["is_featured"] is True

        resp = client.patch("/api/bees/me/quotes", json={"quote_id": quote["id"]}, headers=bee["headers"])
        assert resp.json()["is_featured"] is False

        resp = client.delete(f"/api/bees/me/quotes?id={quote['id']}", headers=bee["headers"])
        assert resp.status_code == 200
        assert client.get("/api/bees/me/quotes", headers=bee["headers"]).json()["quotes"] == []

    def test_short_quote_rejected(self, client, make_bee):
        bee = make_bee()
        resp = client.post("/api/bees/me/quotes", json={"quote_text": "too short"}, headers=bee["headers"])
        assert resp.status_code == 400
        assert "min 10 characters" in resp.json()["error"]

    def test_cannot_touch_other_bees_quotes(self, client, make_bee):
        bee = make_bee()
        other = make_bee()
        quote = client.post(
            "/api/bees/me/quotes",
            json={"quote_text": "A reflection that belongs to me."},
            headers=bee["headers"],
        ).json()["quote"]
        assert client.patch("/api/bees/me/quotes", json={"quote_id": quote["id"]}, headers=other["headers"]).status_code == 404
        assert client.delete(f"/api/bees/me/quotes?id={quote['id']}", headers=other["headers"]).status_code == 404


class TestTestimonials:
    def test_owner_writes_testimonial_for_gig(self, client, assigned_gig):
        ctx = assigned_gig()
        resp = ctx["owner_session"].post(
            f"/api/bees/{ctx['bee']['id']}/testimonial",
            json={"quote_text": "Delivered early and documented everything.", "gig_id": ctx["gig"]["id"]},
        )
        assert resp.status_code == 201
        quote = resp.json()["quote"]
        assert quote["quote_type"] == "client_testimonial"
        assert quote["author"] == "Tester"
        assert quote["gig_title"] == ctx["gig"]["title"]

        listed = client.get(f"/api/bees/{ctx['bee']['id']}/quotes?type=client_testimonial").json()
        assert [q["id"] for q in listed["quotes"]] == [quote["id"]]
        assert client.get(f"/api/bees/{ctx['bee']['id']}/quotes?type=bee_reflection").json()["quotes"] == []

    def test_bee_writes_testimonial(self, client, make_bee):
        bee = make_bee()
        peer = make_bee()
        resp = client.post(
            f"/api/bees/{bee['id']}/testimonial",
            json={"quote_text": "Great collaborator on a shared research gig."},
            headers=peer["headers"],
        )
        assert resp.status_code == 201
        assert resp.json()["quote"]["author_bee_id"] == peer["id"]

    def test_gig_must_be_assigned_to_bee(self, client, assigned_gig, make_bee):
        ctx = assigned_gig()
        bystander = make_bee()
        resp = ctx["owner_session"].post(
            f"/api/bees/{bystander['id']}/testimonial",
            json={"quote_text": "Never actually worked on this one.", "gig_id": ctx["gig"]["id"]},
        )
        assert resp.status_code == 400

    def test_cannot_praise_self(self, client, make_bee):
        bee = make_bee()
        resp = client.post(
            f"/api/bees/{bee['id']}/testimonial",
            json={"quote_text": "I am simply the best bee around."},
            headers=bee["headers"],
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Cannot write testimonial for yourself"

    def test_requires_login(self, client, make_bee):
        bee = make_bee()
        resp = client.post(f"/api/bees/{bee['id']}/testimonial", json={"quote_text": "Anonymous praise here."})
        assert resp.status_code == 401

    def test_bee_can_remove_testimonial_about_it(self, client, make_bee):
        bee = make_bee()
        peer = make_bee()
        quote = client.post(
            f"/api/bees/{bee['id']}/testimonial",
            json={"quote_text": "Unhelpful comment I would rather hide."},
            headers=peer["headers"],
        ).json()["quote"]
        assert client.delete(f"/api/bees/me/quotes?id={quote['id']}", headers=bee["headers"]).status_code == 200


class TestProfilePortfolio:
    def test_profile_includes_claims_and_quotes(self, client, make_bee, add_claim):
        bee = make_bee()
        claim = add_claim(bee)
        client.post(
            "/api/bees/me/quotes",
            json={"quote_text": "Every scraper needs a retry budget."},
            headers=bee["headers"],
        )

        profile = client.get(f"/api/bees/{bee['name']}").json()
        assert [c["id"] for c in profile["skill_claims"]] == [claim["id"]]
        assert profile["quotes"][0]["quote_text"] == "Every scraper needs a retry budget."

    def test_unregistered_bee_portfolio_hidden(self, client, make_bee, add_claim):
        bee = make_bee()
        add_claim(bee)
        client.delete("/api/bees/unregister", headers=bee["headers"])
        assert client.get(f"/api/bees/{bee['id']}/skills").status_code == 404
        assert client.get(f"/api/bees/{bee['id']}/quotes").status_code == 404
