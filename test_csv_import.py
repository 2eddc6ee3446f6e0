import io
import pytest
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from storefront import create_app, db
from storefront.auth.models import User, RoleEnum
from storefront.catalog.csv_import import (
    TEMPLATE, CSVImportError, parse_csv, group_rows, import_products
)
from storefront.catalog.models import Product, Variant


HEADER = ('name,description,price,offer_price,category,hsn_code,image_urls,stock_quantity,'
          'is_active,featured,features,variant_size,variant_color,variant_price,variant_stock,variant_image')


# ── Parsing ───────────────────────────────────────────────────────

def test_parse_keeps_commas_inside_quotes():
    rows = parse_csv('name,description,price\n"Kurta","Soft, breathable",499\n')
    assert rows == [{'name': 'Kurta', 'description': 'Soft, breathable', 'price': '499'}]


def test_parse_skips_blank_lines_and_bom():
    rows = parse_csv('\ufeffname,price\n\nScarf,300\n , \n')
    assert [r['name'] for r in rows] == ['Scarf']


def test_parse_empty_text():
    assert parse_csv('') == []


def test_short_rows_are_padded():
    rows = parse_csv('name,price,category\nScarf,300\n')
    assert rows[0]['category'] == ''


def test_template_groups_into_two_products():
    groups = group_rows(parse_csv(TEMPLATE))
    assert [g.product['name'] for g in groups] == ['Classic Black Frame', 'Kids Blue Frame']
    assert [len(g.variants) for g in groups] == [2, 1]

    frame = groups[0].product
    assert frame['image_url'] == 'https://example.com/img1.jpg'
    assert frame['image_urls'] == ['https://example.com/img2.jpg']
    assert frame['features'] == ['High quality', 'Lightweight']
    assert frame['offer_price'] == Decimal('999')
    assert frame['is_active'] is True
    assert frame['featured'] is False


def test_same_name_different_hsn_are_separate_products():
    text = HEADER + '\n' + '\n'.join([
        'Kurta,,499,,,6109,,0,,,,M,Red,,3,',
        'Kurta,,499,,,6110,,0,,,,L,Red,,2,',
    ])
    groups = group_rows(parse_csv(text))
    assert len(groups) == 2


def test_row_without_variant_columns_adds_no_variant():
    groups = group_rows(parse_csv('name,price\nScarf,300\n'))
    assert groups[0].variants == []


# ── Import ────────────────────────────────────────────────────────

@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        admin = User(username='admin', name='Admin', role=RoleEnum.admin)
        admin.set_password('admin123')
        db.session.add(admin)
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    c = app.test_client()
    c.post('/auth/login', json={'username': 'admin', 'password': 'admin123'})
    return c


def test_import_template(app):
    created = import_products(TEMPLATE)
    assert len(created) == 2
    assert Product.query.count() == 2
    assert Variant.query.count() == 3

    frame = Product.query.filter_by(name='Classic Black Frame').one()
    assert sorted(v.size for v in frame.variants) == ['L', 'M']
    assert frame.total_variant_stock == 30


def test_import_requires_rows_and_name_column(app):
    with pytest.raises(CSVImportError, match='no data rows'):
        import_products(HEADER + '\n')
    with pytest.raises(CSVImportError, match='"name" column'):
        import_products('title,price\nScarf,300\n')


def test_bad_group_rolls_back_whole_file(app):
    text = HEADER + '\n' + '\n'.join([
        'Scarf,,300,,,,,1,,,,,,,,',
        'Broken,,-5,,,,,1,,,,,,,,',     # violates the non-negative price check
    ])
    with pytest.raises(IntegrityError):
        import_products(text)
    assert Product.query.count() == 0


def test_upload_route_multipart(client):
    resp = client.post(
        '/catalog/csv/upload',
        data={'file': (io.BytesIO(TEMPLATE.encode('utf-8')), 'products.csv')},
        content_type='multipart/form-data',
    )
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['created'] == 2
    assert len(body['products'][0]['variants']) == 2


def test_upload_route_rejects_other_extensions(client):
    resp = client.post(
        '/catalog/csv/upload',
        data={'file': (io.BytesIO(b'name\nScarf\n'), 'products.xlsx')},
        content_type='multipart/form-data',
    )
    assert resp.status_code == 400
    assert Product.query.count() == 0


def test_upload_route_raw_body_error(client):
    resp = client.post('/catalog/csv/upload', data='', content_type='text/csv')
    assert resp.status_code == 400
    assert 'no data rows' in resp.get_json()['error']


def test_template_download(client):
    resp = client.get('/catalog/csv/template')
    assert resp.status_code == 200
    assert 'attachment' in resp.headers['Content-Disposition']
    assert resp.data.decode().startswith('name,description,price')


def test_upload_over_size_limit(client, app):
    app.config['MAX_CONTENT_LENGTH'] = 1024
    resp = client.post('/catalog/csv/upload', data=TEMPLATE * 5, content_type='text/csv')
    assert resp.status_code == 413
    assert Product.query.count() == 0


def test_import_products_command(app, tmp_path):
    path = tmp_path / 'products.csv'
    path.write_text(TEMPLATE, encoding='utf-8')
    result = app.test_cli_runner().invoke(args=['import-products', str(path)])
    assert result.exit_code == 0, result.output
    assert '2 products and 3 variants imported.' in result.output
    assert Product.query.count() == 2


def test_import_products_command_reports_bad_file(app, tmp_path):
    path = tmp_path / 'empty.csv'
    path.write_text(HEADER + '\n', encoding='utf-8')
    result = app.test_cli_runner().invoke(args=['import-products', str(path)])
    assert result.exit_code != 0
    assert 'no data rows' in result.output
