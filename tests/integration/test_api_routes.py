"""
Integration tests for API routes.
Tests the tournament, registration and play endpoints end to end.
"""
import pytest
import json

from conftest import ORGANIZER_ID


def play_through(client, headers, tournament_id, stage_prefix='/api/games', score=(21, 15)):
    """Start, score and complete the next game of a stage over the API."""
    start_url = '/api/games/start' if stage_prefix == '/api/games' else '/api/bracket/games/start'
    started = json.loads(client.post(start_url, json={'tournamentId': tournament_id}, headers=headers).data)
    game = started['game']

    client.patch(f"{stage_prefix}/{game['id']}/score", headers=headers, json={
        'teamAScore': score[0], 'teamBScore': score[1], 'version': game['version']
    })
    response = client.post(f"{stage_prefix}/{game['id']}/complete", headers=headers)
    return json.loads(response.data)


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_check(self, client, db_session):
        """Health check should return 200 with Redis disabled."""
        response = client.get('/health')
        assert response.status_code == 200

        data = json.loads(response.data)
        assert data == {'status': 'healthy', 'redis': 'disabled', 'database': 'connected'}


class TestTournamentCRUD:
    """Tests for tournament CRUD operations."""

    def test_create_tournament(self, client, whitelisted_organizer, login_as, auth_headers):
        """POST /api/tournaments should create an upcoming tournament."""
        login_as()
        response = client.post('/api/tournaments', headers=auth_headers, json={
            'name': 'Summer Smash',
            'date': '2025-07-19',
            'location': 'Beach Courts',
            'maxPods': 8
        })

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['tournament']['slug'] == 'summer-smash-jul-2025'
        assert data['tournament']['status'] == 'upcoming'
        assert data['tournament']['max_pods'] == 8

        role = client.get(f"/api/tournaments/{data['tournament']['id']}/role?userId={ORGANIZER_ID}")
        assert json.loads(role.data)['role'] == 'organizer'

    def test_create_with_format_and_scoring(self, client, whitelisted_organizer, login_as, auth_headers):
        login_as()
        response = client.post('/api/tournaments', headers=auth_headers, json={
            'name': 'Fall Sixes',
            'date': '2025-10-04',
            'location': 'Main Gym',
            'tournamentType': 'set_teams',
            'level': 'open',
            'maxTeams': 8,
            'endPoints': 25,
            'winByTwo': True,
            'cap': 27,
            'prizeInfo': 'Cash to the top two'
        })

        assert response.status_code == 201
        tournament = json.loads(response.data)['tournament']
        assert tournament['tournament_type'] == 'set_teams'
        assert tournament['level'] == 'open'
        assert tournament['scoring_rules']['end_points'] == 25
        assert tournament['scoring_rules']['cap'] == 27
        assert tournament['pool_play_description'].startswith('Pool Play Format')
        assert tournament['prize_info'] == 'Cash to the top two'

    def test_create_rejects_string_is_public(self, client, whitelisted_organizer, login_as, auth_headers):
        login_as()
        response = client.post('/api/tournaments', headers=auth_headers, json={
            'name': 'Summer Smash',
            'date': '2025-07-19',
            'location': 'Beach Courts',
            'isPublic': 'false'
        })
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'isPublic must be true or false'

    def test_create_requires_login(self, client, db_session):
        response = client.post('/api/tournaments', json={'name': 'X', 'date': '2025-07-19', 'location': 'Y'})
        assert response.status_code == 401

    def test_create_requires_whitelist(self, client, db_session, login_as, auth_headers):
        login_as()
        response = client.post('/api/tournaments', headers=auth_headers, json={
            'name': 'X', 'date': '2025-07-19', 'location': 'Y'
        })
        assert response.status_code == 403

    def test_create_missing_fields(self, client, whitelisted_organizer, login_as, auth_headers):
        login_as()
        response = client.post('/api/tournaments', headers=auth_headers, json={'name': 'X'})
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Missing required fields'

    def test_create_invalid_slug(self, client, whitelisted_organizer, login_as, auth_headers):
        login_as()
        response = client.post('/api/tournaments', headers=auth_headers, json={
            'name': 'X', 'date': '2025-07-19', 'location': 'Y', 'slug': 'Not Valid!'
        })
        assert response.status_code == 400
        assert 'Invalid slug format' in json.loads(response.data)['error']

    def test_create_unexpected_error(self, app, client, whitelisted_organizer, login_as, auth_headers, mocker):
        login_as()
        mocker.patch.object(app.registry, 'create_tournament', side_effect=RuntimeError('db down'))
        response = client.post('/api/tournaments', headers=auth_headers, json={
            'name': 'X', 'date': '2025-07-19', 'location': 'Y'
        })
        assert response.status_code == 500
        assert 'unexpected error' in json.loads(response.data)['error']

    def test_get_tournament(self, client, sample_tournament):
        response = client.get(f'/api/tournaments/{sample_tournament.id}')
        assert response.status_code == 200
        assert json.loads(response.data)['slug'] == 'spring-classic-apr-2025'

    def test_get_tournament_not_found(self, client, db_session):
        assert client.get('/api/tournaments/9999').status_code == 404

    def test_get_tournament_invalid_id(self, client, db_session):
        response = client.get('/api/tournaments/abc')
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Invalid tournament ID'

    def test_list_tournaments(self, client, sample_tournament):
        response = client.get('/api/tournaments?status=upcoming&public=true')
        data = json.loads(response.data)
        assert data['count'] == 1
        assert data['tournaments'][0]['id'] == sample_tournament.id

        data = json.loads(client.get('/api/tournaments?status=active').data)
        assert data['count'] == 0

    def test_update_tournament(self, client, sample_tournament, login_as, auth_headers):
        login_as()
        response = client.patch(f'/api/tournaments/{sample_tournament.id}', headers=auth_headers, json={
            'location': 'Indoor Center', 'maxPods': 12
        })
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['tournament']['location'] == 'Indoor Center'
        assert data['tournament']['max_pods'] == 12

    def test_update_start_tournament(self, client, sample_tournament, sample_pods, login_as, auth_headers):
        login_as()
        response = client.patch(f'/api/tournaments/{sample_tournament.id}', headers=auth_headers, json={
            'status': 'active'
        })
        assert response.status_code == 200
        assert json.loads(response.data)['tournament']['status'] == 'active'

        games = json.loads(client.get(f'/api/tournaments/{sample_tournament.id}/games').data)
        assert len(games['games']) == 6

    def test_update_start_needs_pods(self, client, sample_tournament, login_as, auth_headers):
        login_as()
        response = client.patch(f'/api/tournaments/{sample_tournament.id}', headers=auth_headers, json={
            'status': 'active'
        })
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Need at least 2 pods to start'

    def test_update_invalid_max_pods(self, client, sample_tournament, login_as, auth_headers):
        login_as()
        response = client.patch(f'/api/tournaments/{sample_tournament.id}', headers=auth_headers, json={
            'maxPods': 1
        })
        assert response.status_code == 400

    def test_update_rejected_status_keeps_other_edits_out(self, client, sample_tournament, login_as, auth_headers):
        login_as()
        url = f'/api/tournaments/{sample_tournament.id}'
        response = client.patch(url, headers=auth_headers, json={
            'name': 'Renamed', 'status': 'completed'
        })
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Cannot transition from upcoming to completed'

        tournament = json.loads(client.get(url).data)
        assert tournament['name'] == 'Spring Classic'
        assert tournament['status'] == 'upcoming'

    def test_update_is_public_must_be_boolean(self, client, sample_tournament, login_as, auth_headers):
        login_as()
        url = f'/api/tournaments/{sample_tournament.id}'
        response = client.patch(url, headers=auth_headers, json={'isPublic': 'false'})
        assert response.status_code == 400
        assert json.loads(client.get(url).data)['is_public'] is True

    def test_update_not_organizer(self, client, sample_tournament, login_as, auth_headers):
        login_as('user-1', 'pod1@example.com')
        response = client.patch(f'/api/tournaments/{sample_tournament.id}', headers=auth_headers, json={
            'name': 'Hijacked'
        })
        assert response.status_code == 403
        assert json.loads(response.data)['error'] == 'Not authorized to edit this tournament'

    def test_update_anonymous(self, client, sample_tournament):
        response = client.patch(f'/api/tournaments/{sample_tournament.id}', json={'name': 'Hijacked'})
        assert response.status_code == 401

    def test_delete_upcoming(self, client, sample_tournament, login_as, auth_headers):
        login_as()
        tournament_id = sample_tournament.id
        response = client.delete(f'/api/tournaments/{tournament_id}', headers=auth_headers)
        assert response.status_code == 200
        assert client.get(f'/api/tournaments/{tournament_id}').status_code == 404

    def test_delete_active_rejected(self, client, active_tournament, login_as, auth_headers):
        login_as()
        response = client.delete(f'/api/tournaments/{active_tournament.id}', headers=auth_headers)
        assert response.status_code == 400


class TestTournamentLookups:
    """Tests for pods-count and role lookups."""

    def test_pods_count(self, client, sample_tournament, sample_pods):
        response = client.get(f'/api/tournaments/{sample_tournament.id}/pods-count')
        assert response.status_code == 200
        assert json.loads(response.data) == {'count': 4}

    def test_pods_count_invalid_id(self, client, db_session):
        response = client.get('/api/tournaments/four/pods-count')
        assert response.status_code == 400

    def test_pods_count_failure(self, app, client, sample_tournament, mocker):
        mocker.patch.object(app.registry, 'get_pod_count', side_effect=RuntimeError('db down'))
        response = client.get(f'/api/tournaments/{sample_tournament.id}/pods-count')
        assert response.status_code == 500
        assert json.loads(response.data)['error'] == 'Failed to get pod count'

    def test_role(self, client, sample_tournament, sample_pods):
        url = f'/api/tournaments/{sample_tournament.id}/role'
        assert json.loads(client.get(f'{url}?userId={ORGANIZER_ID}').data)['role'] == 'organizer'
        assert json.loads(client.get(f'{url}?userId=stranger').data)['role'] is None
        assert json.loads(client.get(url).data)['role'] is None


class TestPodRegistration:
    """Tests for /api/register-pod and /api/registration-status."""

    def payload(self, tournament_id, **overrides):
        body = {
            'tournamentId': tournament_id,
            'email': 'p9@example.com',
            'player1': 'Nina North',
            'player2': 'Ned Nash',
            'teamName': 'Net Ninjas'
        }
        body.update(overrides)
        return body

    def test_register(self, client, sample_tournament, login_as, auth_headers):
        login_as('player-9', 'p9@example.com')
        response = client.post('/api/register-pod', headers=auth_headers, json=self.payload(sample_tournament.id))

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['success'] is True
        assert data['pod']['name'] == 'Net Ninjas'
        assert data['message'] == 'Registration successful!'

        role = client.get(f'/api/tournaments/{sample_tournament.id}/role?userId=player-9')
        assert json.loads(role.data)['role'] == 'participant'

    def test_register_requires_login(self, client, sample_tournament):
        response = client.post('/api/register-pod', json=self.payload(sample_tournament.id))
        assert response.status_code == 401

    @pytest.mark.parametrize("field", ['email', 'player1', 'player2', 'tournamentId'])
    def test_missing_fields(self, client, sample_tournament, login_as, auth_headers, field):
        login_as('player-9', 'p9@example.com')
        response = client.post('/api/register-pod', headers=auth_headers,
                               json=self.payload(sample_tournament.id, **{field: ''}))
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Missing required fields'

    def test_invalid_email(self, client, sample_tournament, login_as, auth_headers):
        login_as('player-9', 'p9@example.com')
        response = client.post('/api/register-pod', headers=auth_headers,
                               json=self.payload(sample_tournament.id, email='not-an-email'))
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Invalid email format'

    def test_unknown_tournament(self, client, db_session, login_as, auth_headers):
        login_as('player-9', 'p9@example.com')
        response = client.post('/api/register-pod', headers=auth_headers, json=self.payload(9999))
        assert response.status_code == 404

    def test_duplicate_registration(self, client, sample_tournament, login_as, auth_headers):
        login_as('player-9', 'p9@example.com')
        client.post('/api/register-pod', headers=auth_headers, json=self.payload(sample_tournament.id))
        response = client.post('/api/register-pod', headers=auth_headers,
                               json=self.payload(sample_tournament.id, email='other@example.com'))
        assert response.status_code == 400
        assert 'already registered a pod' in json.loads(response.data)['error']

    def test_registration_closed_after_start(self, client, active_tournament, login_as, auth_headers):
        login_as('player-9', 'p9@example.com')
        response = client.post('/api/register-pod', headers=auth_headers, json=self.payload(active_tournament.id))
        assert response.status_code == 400
        assert 'already started' in json.loads(response.data)['error']

    def test_registration_status(self, client, sample_tournament, sample_pods):
        response = client.get(f'/api/registration-status?tournamentId={sample_tournament.id}')
        assert json.loads(response.data) == {
            'isOpen': True, 'podCount': 4, 'maxPods': 9, 'message': 'Registration is open'
        }

    def test_registration_status_default_tournament(self, client, sample_tournament):
        response = client.get('/api/registration-status')
        assert response.status_code == 200
        assert json.loads(response.data)['podCount'] == 0

    def test_registration_status_errors(self, client, db_session):
        assert client.get('/api/registration-status?tournamentId=x').status_code == 400
        assert client.get('/api/registration-status?tournamentId=9999').status_code == 404
        assert client.get('/api/registration-status').status_code == 404


class TestPoolGames:
    """Tests for running pool games through the API."""

    def test_start_game(self, client, active_tournament, login_as, auth_headers):
        login_as()
        response = client.post('/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id})
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['game']['status'] == 'in_progress'
        assert data['game']['game_number'] == 1
        assert data['message'] == 'Game 1 started'

    def test_start_requires_tournament_id(self, client, active_tournament, login_as, auth_headers):
        login_as()
        response = client.post('/api/games/start', headers=auth_headers, json={})
        assert response.status_code == 400

    def test_second_start_conflicts(self, client, active_tournament, login_as, auth_headers):
        login_as()
        client.post('/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id})
        response = client.post('/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id})
        assert response.status_code == 409

        games = json.loads(client.get(f'/api/tournaments/{active_tournament.id}/games').data)
        assert sum(1 for g in games['games'] if g['status'] == 'in_progress') == 1

    def test_start_forbidden_for_participants(self, client, active_tournament, login_as, auth_headers):
        login_as('user-1', 'pod1@example.com')
        response = client.post('/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id})
        assert response.status_code == 403

    def test_start_anonymous(self, client, active_tournament):
        response = client.post('/api/games/start', json={'tournamentId': active_tournament.id})
        assert response.status_code == 401

    def test_score_and_complete(self, client, active_tournament, login_as, auth_headers):
        login_as()
        game = json.loads(client.post(
            '/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id}
        ).data)['game']

        response = client.patch(f"/api/games/{game['id']}/score", headers=auth_headers, json={
            'teamAScore': 21, 'teamBScore': 19, 'version': game['version']
        })
        assert response.status_code == 200
        scored = json.loads(response.data)['game']
        assert (scored['team_a_score'], scored['team_b_score']) == (21, 19)
        assert scored['version'] == game['version'] + 1

        response = client.post(f"/api/games/{game['id']}/complete", headers=auth_headers)
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['game']['status'] == 'completed'
        assert data['game']['winner_pod'] == game['team_a_pod']
        assert data['poolPlayComplete'] is False

    def test_stale_version_conflicts(self, client, active_tournament, login_as, auth_headers):
        login_as()
        game = json.loads(client.post(
            '/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id}
        ).data)['game']
        url = f"/api/games/{game['id']}/score"

        client.patch(url, headers=auth_headers, json={'teamAScore': 1, 'teamBScore': 0, 'version': game['version']})
        response = client.patch(url, headers=auth_headers, json={
            'teamAScore': 0, 'teamBScore': 1, 'version': game['version']
        })
        assert response.status_code == 409

    def test_non_numeric_version_rejected(self, client, active_tournament, login_as, auth_headers):
        login_as()
        game = json.loads(client.post(
            '/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id}
        ).data)['game']

        response = client.patch(f"/api/games/{game['id']}/score", headers=auth_headers, json={
            'teamAScore': 1, 'teamBScore': 0, 'version': 'abc'
        })
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'version must be an integer'

    def test_score_requires_both_teams(self, client, active_tournament, login_as, auth_headers):
        login_as()
        game = json.loads(client.post(
            '/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id}
        ).data)['game']
        response = client.patch(f"/api/games/{game['id']}/score", headers=auth_headers, json={'teamAScore': 3})
        assert response.status_code == 400

    def test_negative_score_rejected(self, client, active_tournament, login_as, auth_headers):
        login_as()
        game = json.loads(client.post(
            '/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id}
        ).data)['game']
        response = client.patch(f"/api/games/{game['id']}/score", headers=auth_headers, json={
            'teamAScore': -1, 'teamBScore': 0
        })
        assert response.status_code == 400

    def test_invalid_final_score(self, client, active_tournament, login_as, auth_headers):
        login_as()
        game = json.loads(client.post(
            '/api/games/start', headers=auth_headers, json={'tournamentId': active_tournament.id}
        ).data)['game']
        client.patch(f"/api/games/{game['id']}/score", headers=auth_headers, json={'teamAScore': 21, 'teamBScore': 20})

        response = client.post(f"/api/games/{game['id']}/complete", headers=auth_headers)
        assert response.status_code == 400
        assert 'Invalid final score' in json.loads(response.data)['error']

    def test_unknown_game(self, client, active_tournament, login_as, auth_headers):
        login_as()
        response = client.patch('/api/games/99999/score', headers=auth_headers, json={'teamAScore': 1, 'teamBScore': 0})
        assert response.status_code == 404

    def test_standings_after_game(self, client, active_tournament, login_as, auth_headers):
        login_as()
        result = play_through(client, auth_headers, active_tournament.id, score=(21, 15))

        response = client.get(f'/api/tournaments/{active_tournament.id}/standings')
        data = json.loads(response.data)
        assert data['poolPlayComplete'] is False
        leader = data['standings'][0]
        assert leader['pod_id'] == result['game']['team_a_pod']
        assert (leader['wins'], leader['point_differential']) == (1, 6)

    def test_unknown_tournament_reads(self, client, db_session):
        assert client.get('/api/tournaments/9999/games').status_code == 404
        assert client.get('/api/tournaments/9999/standings').status_code == 404


class TestBracketFlow:
    """Pool play into the bracket and on to a champion."""

    def test_bracket_unavailable_while_upcoming(self, client, sample_tournament):
        response = client.get(f'/api/tournaments/{sample_tournament.id}/bracket')
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Bracket not yet available'

    def test_initialize_before_pool_complete(self, client, active_tournament, login_as, auth_headers):
        login_as()
        response = client.post('/api/bracket/initialize', headers=auth_headers,
                               json={'tournamentId': active_tournament.id})
        assert response.status_code == 400
        assert json.loads(response.data)['error'] == 'Pool play is not complete'

    def test_full_tournament(self, client, active_tournament, login_as, auth_headers):
        login_as()
        tid = active_tournament.id

        for _ in range(6):
            result = play_through(client, auth_headers, tid)
        assert result['poolPlayComplete'] is True

        response = client.post('/api/bracket/initialize', headers=auth_headers, json={'tournamentId': tid})
        assert response.status_code == 200
        data = json.loads(response.data)
        assert len(data['games']) == 3
        assert [r['name'] for r in data['bracket']['rounds']] == ['Semifinal', 'Final']

        semi_1 = play_through(client, auth_headers, tid, stage_prefix='/api/bracket/games')
        semi_2 = play_through(client, auth_headers, tid, stage_prefix='/api/bracket/games')
        assert semi_1['champion'] is None

        bracket = json.loads(client.get(f'/api/tournaments/{tid}/bracket').data)
        final = bracket['rounds'][1]['matches'][0]
        assert final['team_a_pod'] == semi_1['game']['winner_pod']
        assert final['team_b_pod'] == semi_2['game']['winner_pod']

        final_result = play_through(client, auth_headers, tid, stage_prefix='/api/bracket/games', score=(25, 23))
        assert final_result['champion'] == semi_1['game']['winner_pod']

    def test_reset_bracket(self, client, active_tournament, login_as, auth_headers):
        login_as()
        tid = active_tournament.id
        for _ in range(6):
            play_through(client, auth_headers, tid)
        client.post('/api/bracket/initialize', headers=auth_headers, json={'tournamentId': tid})
        play_through(client, auth_headers, tid, stage_prefix='/api/bracket/games')

        response = client.post('/api/bracket/reset', headers=auth_headers, json={'tournamentId': tid})
        assert response.status_code == 200
        games = json.loads(response.data)['games']
        assert all(g['status'] == 'pending' for g in games)

    def test_bracket_actions_need_organizer(self, client, active_tournament, login_as, auth_headers):
        login_as('user-1', 'pod1@example.com')
        for url in ('/api/bracket/initialize', '/api/bracket/reset', '/api/bracket/games/start'):
            response = client.post(url, headers=auth_headers, json={'tournamentId': active_tournament.id})
            assert response.status_code == 403


class TestLiveEvents:

    def test_sse_unavailable_without_redis(self, client, sample_tournament):
        response = client.get(f'/api/v1/events/tournaments/{sample_tournament.id}')
        assert response.status_code == 503

    def test_sse_stream(self, app, client, sample_tournament, mock_live, mocker):
        mock_live.listen.return_value = iter([None, '{"type": "match.score"}'])
        mocker.patch.object(app, 'live', mock_live)

        response = client.get(f'/api/v1/events/tournaments/{sample_tournament.id}')
        assert response.status_code == 200
        assert response.mimetype == 'text/event-stream'

        body = response.get_data(as_text=True)
        assert '"type":"connected"' in body
        assert ': keepalive\n\n' in body
        assert 'data: {"type": "match.score"}\n\n' in body

    def test_sse_unknown_tournament(self, app, client, db_session, mock_live, mocker):
        mocker.patch.object(app, 'live', mock_live)
        response = client.get('/api/v1/events/tournaments/9999')
        assert response.status_code == 404
