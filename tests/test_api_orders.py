"""
FastAPI order endpoint tests using TestClient.
The batch coordinator and extractor are replaced through dependency
overrides; no Google calls are made.
"""
import json
import os
import sys
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

sys.path.insert(0, os.path.dirname(__file__))
import intake_fakes  # noqa: E402,F401

import config  # noqa: E402
from order_intake_contract import (  # noqa: E402
    AttachmentUploadFailure,
    OrderAttachment,
    SheetTarget,
    WriteSummary,
)


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        import api.auth.dependencies as deps
        from api.auth.credential_store import credential_store
        from api.main import create_app
        from fastapi.testclient import TestClient

        deps.reset_dependencies()
        credential_store.clear()
        self.deps = deps
        self.credential_store = credential_store

        self.config_patch = patch.object(config, 'SPREADSHEET_ID', 'sheet-1')
        self.config_patch.start()

        self.coordinator = MagicMock()
        self.coordinator.submit_batch = AsyncMock()
        self.app = create_app()
        self.client = TestClient(self.app)

    def tearDown(self):
        self.app.dependency_overrides.clear()
        self.config_patch.stop()
        self.deps.reset_dependencies()
        self.credential_store.clear()

    def use_coordinator(self):
        self.app.dependency_overrides[self.deps.get_batch_coordinator] = lambda: self.coordinator


class TestSubmitOrders(ApiTestCase):

    def test_submit_success(self):
        self.use_coordinator()
        self.coordinator.submit_batch.return_value = WriteSummary(
            success=True, row_count=1, tab_name='Kim', start_row=2, end_row=2, attachment_urls=['']
        )

        res = self.client.post('/api/submit-orders', data={
            'manager': 'Kim',
            'orders': json.dumps([{'제품명': 'Widget', '수취인명': 'Lee'}]),
        })

        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['message'], '1건의 주문이 [Kim] 시트에 저장되었습니다.')
        self.assertEqual(body['start_row'], 2)
        target, payloads, attachments = self.coordinator.submit_batch.call_args[0]
        self.assertEqual(target, SheetTarget('sheet-1', 'Kim'))
        self.assertEqual(payloads, [{'제품명': 'Widget', '수취인명': 'Lee'}])
        self.assertEqual(attachments, [None])

    def test_images_follow_image_indexes(self):
        self.use_coordinator()
        self.coordinator.submit_batch.return_value = WriteSummary(success=True, row_count=2, tab_name='Kim')

        res = self.client.post(
            '/api/submit-orders',
            data={'manager': 'Kim', 'orders': json.dumps([{'제품명': 'A'}, {'제품명': 'B'}]), 'image_indexes': '[1]'},
            files=[('images', ('receipt.png', b'png-bytes', 'image/png'))],
        )

        self.assertEqual(res.status_code, 200)
        attachments = self.coordinator.submit_batch.call_args[0][2]
        self.assertIsNone(attachments[0])
        self.assertEqual(attachments[1], OrderAttachment(b'png-bytes', 'image/png', 'receipt.png'))

    def test_images_default_to_positional_pairing(self):
        self.use_coordinator()
        self.coordinator.submit_batch.return_value = WriteSummary(success=True, row_count=2, tab_name='Kim')

        self.client.post(
            '/api/submit-orders',
            data={'manager': 'Kim', 'orders': json.dumps([{'제품명': 'A'}, {'제품명': 'B'}])},
            files=[('images', ('a.jpg', b'a', 'image/jpeg'))],
        )

        attachments = self.coordinator.submit_batch.call_args[0][2]
        self.assertEqual(attachments[0].filename, 'a.jpg')
        self.assertIsNone(attachments[1])

    def test_missing_manager_is_400(self):
        self.use_coordinator()

        res = self.client.post('/api/submit-orders', data={'orders': '[]'})

        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()['detail'], '담당자를 선택해주세요.')
        self.coordinator.submit_batch.assert_not_called()

    def test_malformed_orders_is_400(self):
        self.use_coordinator()

        res = self.client.post('/api/submit-orders', data={'manager': 'Kim', 'orders': '{not json'})

        self.assertEqual(res.status_code, 400)

    def test_more_images_than_orders_is_400(self):
        self.use_coordinator()

        res = self.client.post(
            '/api/submit-orders',
            data={'manager': 'Kim', 'orders': json.dumps([{'제품명': 'A'}])},
            files=[('images', ('a.jpg', b'a', 'image/jpeg')), ('images', ('b.jpg', b'b', 'image/jpeg'))],
        )

        self.assertEqual(res.status_code, 400)

    def test_bad_image_index_is_400(self):
        self.use_coordinator()

        res = self.client.post(
            '/api/submit-orders',
            data={'manager': 'Kim', 'orders': json.dumps([{'제품명': 'A'}]), 'image_indexes': '[3]'},
            files=[('images', ('a.jpg', b'a', 'image/jpeg'))],
        )

        self.assertEqual(res.status_code, 400)

    def test_unsupported_file_type_is_400(self):
        self.use_coordinator()

        res = self.client.post(
            '/api/submit-orders',
            data={'manager': 'Kim', 'orders': json.dumps([{'제품명': 'A'}])},
            files=[('images', ('script.exe', b'MZ', 'application/octet-stream'))],
        )

        self.assertEqual(res.status_code, 400)
        self.assertIn('.exe', res.json()['detail'])

    def test_upload_failure_is_500(self):
        self.use_coordinator()
        self.coordinator.submit_batch.side_effect = AttachmentUploadFailure("Upload of 'a.jpg' failed: quota")

        res = self.client.post('/api/submit-orders', data={
            'manager': 'Kim', 'orders': json.dumps([{'제품명': 'A'}]),
        })

        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json()['detail'], "Upload of 'a.jpg' failed: quota")

    def test_unexpected_failure_is_500(self):
        self.use_coordinator()
        self.coordinator.submit_batch.side_effect = RuntimeError("boom")

        res = self.client.post('/api/submit-orders', data={
            'manager': 'Kim', 'orders': json.dumps([{'제품명': 'A'}]),
        })

        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json()['detail'], 'boom')

    def test_without_credentials_is_401(self):
        res = self.client.post('/api/submit-orders', data={
            'manager': 'Kim', 'orders': json.dumps([{'제품명': 'A'}]),
        })

        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()['detail'], 'Google 인증이 필요합니다.')

    @patch('order_intake_drive.DriveAttachmentStore.from_credentials')
    @patch('sheets.tabular_store.SheetsTabularStore.from_credentials')
    def test_coordinator_built_from_loaded_credentials(self, mock_sheets, mock_drive):
        credentials = MagicMock()
        self.credential_store.set_credentials(credentials, 'test')

        first = self.deps.get_batch_coordinator()
        second = self.deps.get_batch_coordinator()

        self.assertIs(first, second)
        mock_sheets.assert_called_once_with(credentials)
        mock_drive.assert_called_once_with(credentials)


class TestParseOrder(ApiTestCase):

    def test_parse_order_returns_keyed_and_positional(self):
        extractor = MagicMock()
        extractor.extract.return_value = {'제품명': 'Widget', '수취인명': 'Lee'}
        extractor.to_positional.return_value = ['Widget', 'Lee']
        self.app.dependency_overrides[self.deps.get_order_extractor] = lambda: extractor

        res = self.client.post('/api/parse-order', json={'text': '위젯 이수진'})

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {'order': {'제품명': 'Widget', '수취인명': 'Lee'}, 'values': ['Widget', 'Lee']})
        extractor.extract.assert_called_once_with('위젯 이수진')

    def test_parse_order_empty_text_is_400(self):
        from order_intake_extraction import OrderTextExtractor

        extractor = OrderTextExtractor(model=MagicMock())
        self.app.dependency_overrides[self.deps.get_order_extractor] = lambda: extractor

        res = self.client.post('/api/parse-order', json={'text': ''})

        self.assertEqual(res.status_code, 400)


class TestSchemaAndHealth(ApiTestCase):

    def test_schema(self):
        res = self.client.get('/api/schema')

        self.assertEqual(res.status_code, 200)
        data = res.json()
        self.assertEqual(data['columns'], config.CANONICAL_COLUMNS)
        self.assertEqual(data['reserved_columns'], config.RESERVED_COLUMNS)
        self.assertEqual(data['header_strategy'], config.HEADER_STRATEGY)

    def test_validate_tab(self):
        self.use_coordinator()
        self.coordinator.provisioner.validate_tab_structure.return_value = (False, ['Missing tab: Kim'])

        res = self.client.get('/api/tabs/Kim/validate')

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {'manager': 'Kim', 'valid': False, 'issues': ['Missing tab: Kim']})

    def test_health_reports_missing_credentials(self):
        res = self.client.get('/health')

        self.assertEqual(res.status_code, 200)
        data = res.json()
        self.assertEqual(data['status'], 'degraded')
        self.assertEqual(data['components']['google_auth'], 'unauthenticated')

    def test_health_with_credentials(self):
        self.credential_store.set_credentials(MagicMock(), 'service_account')

        data = self.client.get('/health').json()

        self.assertEqual(data['status'], 'healthy')
        self.assertEqual(data['components']['google_auth'], 'service_account')

    def test_root_and_docs(self):
        self.assertEqual(self.client.get('/').json()['service'], 'Order Sheet Intake API')
        self.assertEqual(self.client.get('/docs').status_code, 200)


if __name__ == '__main__':
    unittest.main()
