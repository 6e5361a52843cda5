def test_index_redirects_to_standings(client):
    res = client.get('/')
    assert res.status_code == 302
    assert res.headers['Location'].endswith('/standings')


def test_standings_empty(client):
    res = client.get('/standings')
    assert res.status_code == 200
    data = res.get_json()
    assert data['standings'] == []
    assert data['scope'] == 'all'
    assert data['system_name'] == 'Torneio de Xadrez'


def test_standings_aggregate_and_stage_scope(client, seeded_store):
    data = client.get('/standings').get_json()
    rows = data['standings']
    assert [r['player_id'] for r in rows] == ['p2', 'p1', 'p3']
    assert [r['total'] for r in rows] == [12, 10, 0]
    assert rows[0]['display_name'] == 'GM Hikaru Nakamura'
    assert rows[0]['dropped_stage_id'] == 's1'
    assert rows[0]['is_category_leader'] is True
    assert rows[1]['is_category_leader'] is False
    assert rows[2]['category_name'] == 'Feminino'
    assert rows[2]['is_category_leader'] is True
    assert [s['id'] for s in data['stages']] == ['s1', 's2']

    rows = client.get('/standings?stage=s1').get_json()['standings']
    assert [(r['player_id'], r['total']) for r in rows] == [('p1', 10), ('p2', 8), ('p3', 0)]


def test_standings_filters_keep_positions(client, seeded_store):
    rows = client.get('/standings?q=magnus').get_json()['standings']
    assert [(r['player_id'], r['position']) for r in rows] == [('p1', 2)]

    rows = client.get('/standings?top=1').get_json()['standings']
    assert [r['player_id'] for r in rows] == ['p2']

    rows = client.get('/standings?leaders=1').get_json()['standings']
    assert [r['player_id'] for r in rows] == ['p2', 'p3']


def test_standings_unknown_stage_404(client, seeded_store):
    assert client.get('/standings?stage=nope').status_code == 404


def test_standings_highlights_unknown_stage_404(client, seeded_store):
    assert client.get('/standings/highlights?stage=nope').status_code == 404
    assert client.get('/standings/highlights?stage=s2').status_code == 200


def test_standings_highlights(client, seeded_store):
    data = client.get('/standings/highlights?top=2').get_json()
    assert [r['player_id'] for r in data['podium']] == ['p2', 'p1']
    assert [r['player_id'] for r in data['category_leaders']] == ['p2', 'p3']


def test_writes_require_login(client, seeded_store):
    res = client.post('/api/players', json={'name': 'Anon'})
    assert res.status_code == 401
    res = client.delete('/api/players/p1')
    assert res.status_code == 401
    assert len(seeded_store['players']) == 3


def test_login_rejects_bad_password(client, caplog):
    caplog.set_level('WARNING')
    res = client.post('/login', json={'username': 'admin', 'password': 'wrong'})
    assert res.status_code == 401
    assert any(r.getMessage().startswith('login_failed') for r in caplog.records)


def test_logout_drops_session(admin_client):
    assert admin_client.post('/logout').status_code == 200
    assert admin_client.post('/api/stages', json={'name': 'X'}).status_code == 401


def test_player_crud_flow(admin_client, memory_store):
    res = admin_client.post('/api/players', json={
        'name': 'Alireza Firouzja', 'category_id': 'c1', 'title_id': '', 'rating': '2760',
    })
    assert res.status_code == 201
    player = res.get_json()['player']
    assert player['title_id'] is None
    assert player['rating'] == 2760
    pid = player['id']

    res = admin_client.put(f'/api/players/{pid}', json={'title_id': 't1'})
    assert res.status_code == 200
    assert res.get_json()['player']['name'] == 'Alireza Firouzja'
    assert memory_store['players'][0]['title_id'] == 't1'

    players = admin_client.get('/api/players').get_json()['players']
    assert [p['id'] for p in players] == [pid]

    assert admin_client.post('/api/players', json={'name': '  '}).status_code == 400
    assert admin_client.put('/api/players/missing', json={'name': 'X'}).status_code == 404


def test_delete_player_cascades_scores(admin_client, seeded_store):
    res = admin_client.delete('/api/players/p1')
    assert res.status_code == 200
    assert res.get_json()['scores_removed'] == 2
    assert all(s['player_id'] != 'p1' for s in seeded_store['scores'])
    assert len(seeded_store['scores']) == 2


def test_delete_stage_cascades_scores(admin_client, seeded_store):
    res = admin_client.delete('/api/stages/s2')
    assert res.status_code == 200
    assert res.get_json()['scores_removed'] == 2
    assert [s['id'] for s in seeded_store['stages']] == ['s1']
    assert all(s['stage_id'] == 's1' for s in seeded_store['scores'])


def test_category_in_use_cannot_be_deleted(admin_client, seeded_store):
    res = admin_client.delete('/api/categories/c1')
    assert res.status_code == 400
    assert 'error' in res.get_json()
    assert any(c['id'] == 'c1' for c in seeded_store['categories'])

    assert admin_client.delete('/api/categories/c3').status_code == 200
    assert all(c['id'] != 'c3' for c in seeded_store['categories'])


def test_title_in_use_cannot_be_deleted(admin_client, seeded_store):
    assert admin_client.delete('/api/titles/t1').status_code == 400
    assert admin_client.delete('/api/titles/t2').status_code == 200
    assert admin_client.delete('/api/titles/t2').status_code == 404


def test_rename_category_and_title(admin_client, seeded_store):
    res = admin_client.put('/api/categories/c3', json={'name': 'Sub-18'})
    assert res.get_json()['category'] == {'id': 'c3', 'name': 'Sub-18'}
    res = admin_client.post('/api/titles', json={'name': 'WGM'})
    assert res.status_code == 201
    assert any(t['name'] == 'WGM' for t in seeded_store['titles'])


def test_stage_create_and_update(admin_client, memory_store):
    res = admin_client.post('/api/stages', json={'name': 'Etapa 1', 'url': 'https://chess-results.com/x'})
    stage = res.get_json()['stage']
    res = admin_client.put(f"/api/stages/{stage['id']}", json={'name': 'Etapa 1 - Rapidas'})
    updated = res.get_json()['stage']
    assert updated['name'] == 'Etapa 1 - Rapidas'
    assert updated['url'] == 'https://chess-results.com/x'


def test_save_stage_scores_upserts(admin_client, seeded_store, caplog):
    caplog.set_level('INFO')
    res = admin_client.post('/api/stages/s1/scores', json={
        'points': {'p1': '10', 'p2': '', 'p3': '7.5', 'ghost': '3'},
    })
    assert res.status_code == 200
    data = res.get_json()
    assert (data['inserted'], data['updated'], data['deleted']) == (1, 0, 1)

    s1 = {s['player_id']: s['points'] for s in seeded_store['scores'] if s['stage_id'] == 's1'}
    assert s1 == {'p1': 10, 'p3': 7.5}
    assert any(r.getMessage().startswith('stage_scores_saved stage=s1') for r in caplog.records)

    res = admin_client.post('/api/stages/s1/scores', json={'points': {'p1': 11}})
    assert res.get_json()['updated'] == 1
    points = admin_client.get('/api/stages/s1/scores').get_json()['points']
    assert points == {'p1': 11, 'p2': None, 'p3': 7.5}


def test_save_stage_scores_keeps_one_score_per_stage(admin_client, seeded_store):
    for value in ('4', '5', '6'):
        admin_client.post('/api/stages/s2/scores', json={'points': {'p3': value}})
    p3 = [s for s in seeded_store['scores'] if s['player_id'] == 'p3']
    assert len(p3) == 1
    assert p3[0]['points'] == 6


def test_save_stage_scores_validation(admin_client, seeded_store):
    assert admin_client.post('/api/stages/s1/scores', json={'points': []}).status_code == 400
    assert admin_client.post('/api/stages/zz/scores', json={'points': {}}).status_code == 404


def test_standings_cache_cleared_after_write(admin_client, seeded_store):
    first = admin_client.get('/standings').get_json()['standings']
    assert first[0]['player_id'] == 'p2'
    admin_client.post('/api/stages/s1/scores', json={'points': {'p3': 40}})
    admin_client.post('/api/stages/s2/scores', json={'points': {'p3': 40}})
    rows = admin_client.get('/standings').get_json()['standings']
    assert rows[0]['player_id'] == 'p3'
    assert rows[0]['total'] == 40


def test_stage_ranking_sets_rank_and_orders_stage_view(admin_client, seeded_store):
    res = admin_client.post('/api/stages/s1/ranking', json={'ranking': [
        {'player_id': 'p3', 'position': 1},
        {'player_id': 'p2', 'position': 2},
        {'player_id': 'p1', 'position': 3},
    ]})
    assert res.status_code == 200
    data = res.get_json()
    assert data['ranked'] == 3
    assert data['inserted'] == 1

    rows = admin_client.get('/standings?stage=s1').get_json()['standings']
    assert [r['player_id'] for r in rows] == ['p3', 'p2', 'p1']

    admin_client.post('/api/stages/s1/ranking', json={'ranking': [{'player_id': 'p1', 'position': 1}]})
    ranks = {s['player_id']: s['rank'] for s in seeded_store['scores'] if s['stage_id'] == 's1'}
    assert ranks == {'p1': 1, 'p2': None, 'p3': None}


def test_stage_ranking_rejects_bad_position(admin_client, seeded_store):
    res = admin_client.post('/api/stages/s1/ranking', json={'ranking': [{'player_id': 'p1', 'position': 'x'}]})
    assert res.status_code == 400


def test_delete_single_score(admin_client, seeded_store):
    assert admin_client.delete('/api/scores/sc1').status_code == 200
    assert all(s['id'] != 'sc1' for s in seeded_store['scores'])
    assert admin_client.delete('/api/scores/sc1').status_code == 404


def test_settings_roundtrip(admin_client, memory_store):
    res = admin_client.post('/api/settings', json={'system_name': 'Circuito Paulista', 'ignored': 1})
    assert res.status_code == 200
    assert memory_store['settings'] == {'system_name': 'Circuito Paulista'}
    data = admin_client.get('/api/settings').get_json()
    assert data == {'system_name': 'Circuito Paulista', 'system_logo': None}
    assert admin_client.post('/api/settings', json={'system_name': ''}).status_code == 400


def test_list_scores_filters(client, seeded_store):
    rows = client.get('/api/scores').get_json()['scores']
    assert [r['id'] for r in rows] == ['sc1', 'sc2', 'sc3', 'sc4']

    rows = client.get('/api/scores?stage=s1').get_json()['scores']
    assert [r['id'] for r in rows] == ['sc1', 'sc2']

    rows = client.get('/api/scores?player=p1').get_json()['scores']
    assert [(r['id'], r['stage_id'], r['points']) for r in rows] == [('sc1', 's1', 10), ('sc3', 's2', 9)]

    rows = client.get('/api/scores?stage=s2&player=p2').get_json()['scores']
    assert rows == [{'id': 'sc4', 'player_id': 'p2', 'stage_id': 's2', 'points': 12, 'rank': None}]

    assert client.get('/api/scores?player=p3').get_json()['scores'] == []


def test_decimal_points_serialised_as_numbers(admin_client, seeded_store):
    for stage_id, value in (('s1', '0.1'), ('s2', '0.2')):
        admin_client.post(f'/api/stages/{stage_id}/scores', json={'points': {'p3': value}})
    s3 = admin_client.post('/api/stages', json={'name': 'Etapa 3'}).get_json()['stage']['id']
    admin_client.post(f'/api/stages/{s3}/scores', json={'points': {'p3': '0,3'}})

    rows = admin_client.get('/standings?q=ju').get_json()['standings']
    assert rows[0]['total'] == 0.5
    assert rows[0]['dropped'] == 0.1
    scores = admin_client.get('/api/scores?player=p3').get_json()['scores']
    assert [r['points'] for r in scores] == [0.1, 0.2, 0.3]


def test_admin_writes_are_logged(admin_client, seeded_store, caplog):
    caplog.set_level('INFO')
    category_id = admin_client.post('/api/categories', json={'name': 'Sub-12'}).get_json()['category']['id']
    admin_client.put(f'/api/categories/{category_id}', json={'name': 'Sub-14'})
    admin_client.delete(f'/api/categories/{category_id}')
    title_id = admin_client.post('/api/titles', json={'name': 'WGM'}).get_json()['title']['id']
    admin_client.put(f'/api/titles/{title_id}', json={'name': 'WIM'})
    admin_client.delete(f'/api/titles/{title_id}')
    admin_client.put('/api/players/p3', json={'name': 'Ju Wenjun', 'rating': '2560'})
    admin_client.put('/api/stages/s2', json={'name': 'Etapa Final'})
    admin_client.delete('/api/scores/sc1')
    admin_client.post('/api/settings', json={'system_name': 'Circuito Paulista'})

    messages = [r.getMessage() for r in caplog.records]
    for expected in (
        f'category_created id={category_id}',
        f'category_updated id={category_id}',
        f'category_deleted id={category_id}',
        f'title_created id={title_id}',
        f'title_updated id={title_id}',
        f'title_deleted id={title_id}',
        'player_updated id=p3',
        'stage_updated id=s2',
        'score_deleted id=sc1',
        'settings_saved keys=system_name',
    ):
        assert expected in messages
