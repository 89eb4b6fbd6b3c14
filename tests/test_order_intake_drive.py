"""
Drive attachment store tests (mocked Drive v3 service).
"""
import os
import sys
import threading
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.dirname(__file__))
import intake_fakes  # noqa: E402,F401

from order_intake_contract import AttachmentUploadFailure  # noqa: E402
from order_intake_drive import DriveAttachmentStore  # noqa: E402


class TestDriveAttachmentStore(unittest.TestCase):

    def setUp(self):
        self.service = MagicMock()
        self.files = self.service.files.return_value
        self.permissions = self.service.permissions.return_value
        self.store = DriveAttachmentStore(self.service)

    def test_upload_returns_web_view_link(self):
        self.files.create.return_value.execute.return_value = {
            'id': 'file-1', 'webViewLink': 'https://drive.google.com/file/d/file-1/view?usp=drivesdk',
        }

        ref = self.store.upload(b'jpeg-bytes', 'image/jpeg', '주문_Lee_1_0.jpg', 'folder-9')

        self.assertEqual(ref.file_id, 'file-1')
        self.assertEqual(ref.public_url, 'https://drive.google.com/file/d/file-1/view?usp=drivesdk')
        kwargs = self.files.create.call_args.kwargs
        self.assertEqual(kwargs['body'], {'name': '주문_Lee_1_0.jpg', 'parents': ['folder-9']})
        self.assertEqual(kwargs['fields'], 'id, webViewLink')
        self.assertEqual(kwargs['media_body'].mimetype(), 'image/jpeg')

    def test_upload_makes_file_public(self):
        self.files.create.return_value.execute.return_value = {'id': 'file-1'}

        self.store.upload(b'x', 'image/png', 'a.png')

        self.permissions.create.assert_called_once_with(
            fileId='file-1', body={'type': 'anyone', 'role': 'reader'}
        )

    def test_missing_link_falls_back_to_view_url(self):
        self.files.create.return_value.execute.return_value = {'id': 'file-2'}

        ref = self.store.upload(b'x', 'image/png', 'a.png')

        self.assertEqual(ref.public_url, 'https://drive.google.com/file/d/file-2/view?usp=sharing')

    def test_no_folder_uploads_to_root(self):
        self.files.create.return_value.execute.return_value = {'id': 'file-3'}

        self.store.upload(b'x', 'image/png', 'a.png', None)

        self.assertEqual(self.files.create.call_args.kwargs['body'], {'name': 'a.png'})

    def test_create_failure_raises_upload_failure(self):
        self.files.create.return_value.execute.side_effect = RuntimeError("storageQuotaExceeded")

        with self.assertRaises(AttachmentUploadFailure) as ctx:
            self.store.upload(b'x', 'image/png', 'a.png')
        self.assertIn('storageQuotaExceeded', ctx.exception.message)

    def test_permission_failure_raises_upload_failure(self):
        self.files.create.return_value.execute.return_value = {'id': 'file-4'}
        self.permissions.create.return_value.execute.side_effect = RuntimeError("403")

        with self.assertRaises(AttachmentUploadFailure):
            self.store.upload(b'x', 'image/png', 'a.png')

    def test_missing_file_id_raises(self):
        self.files.create.return_value.execute.return_value = {}

        with self.assertRaises(AttachmentUploadFailure):
            self.store.upload(b'x', 'image/png', 'a.png')

    @patch('order_intake_drive.build')
    def test_from_credentials_builds_drive_v3_on_first_use(self, mock_build):
        credentials = MagicMock()

        store = DriveAttachmentStore.from_credentials(credentials)
        mock_build.assert_not_called()

        self.assertIs(store.service, mock_build.return_value)
        self.assertIs(store.service, mock_build.return_value)
        mock_build.assert_called_once_with('drive', 'v3', credentials=credentials, cache_discovery=False)

    def test_store_needs_service_or_factory(self):
        with self.assertRaises(ValueError):
            DriveAttachmentStore()


class TestDriveClientPerThread(unittest.TestCase):

    @patch('order_intake_drive.build')
    def test_concurrent_uploads_use_separate_clients(self, mock_build):
        built = []
        lock = threading.Lock()

        def new_service(*args, **kwargs):
            service = MagicMock()
            with lock:
                built.append(service)
                service.files.return_value.create.return_value.execute.return_value = {
                    'id': f'file-{len(built)}',
                }
            return service

        mock_build.side_effect = new_service
        store = DriveAttachmentStore.from_credentials(MagicMock())
        barrier = threading.Barrier(3)
        used = {}
        errors = []

        def worker(index):
            try:
                barrier.wait(timeout=5)
                store.upload(b'x', 'image/png', f'{index}.png')
                store.upload(b'y', 'image/png', f'{index}b.png')
                used[index] = store.service
            except Exception as e:  # surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(mock_build.call_count, 3)
        self.assertEqual(len({id(service) for service in used.values()}), 3)
        for service in built:
            self.assertEqual(service.files.return_value.create.call_count, 2)
            self.assertEqual(service.permissions.return_value.create.call_count, 2)


if __name__ == '__main__':
    unittest.main()
