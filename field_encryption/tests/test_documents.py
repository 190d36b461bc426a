"""
Integration tests for encrypted documents on Django models.

Tests the lifecycle hooks against the test database:
- Encryption before save and decryption on load
- Encrypted partial updates
- Equality search under a fixed salt
"""

from django.db import models
from django.test import TestCase

from field_encryption.backends import encrypt
from field_encryption.documents import BoundFieldEncryption, FieldEncryption
from field_encryption.exceptions import DecryptionError, EncryptionConfigurationError
from field_encryption.keys import derive_key


class EncryptedPost(models.Model):
    """Post storing its content in an encrypted document."""

    title = models.CharField(max_length=100)
    document = models.JSONField(default=dict, blank=True)

    encryption = FieldEncryption(
        fields=['message', 'metadata', 'tags', 'secretNotFetched'],
        secret='icanhazcheezburger',
    )

    class Meta:
        app_label = 'field_encryption'
        db_table = 'test_encrypted_post'


class SearchableContact(models.Model):
    """Contact whose email is encrypted with a fixed salt."""

    payload = models.JSONField(default=dict, blank=True)

    encryption = FieldEncryption(
        fields=['email'],
        secret=lambda: 'some secret key',
        salt_generator=lambda key: key[:16],
        document_field='payload',
    )

    class Meta:
        app_label = 'field_encryption'
        db_table = 'test_searchable_contact'


class Thread(models.Model):
    """Thread whose author and replies carry encrypted sub-document fields."""

    document = models.JSONField(default=dict, blank=True)

    encryption = FieldEncryption(
        fields=['author.password', 'replies.body'],
        secret='some secret key',
    )

    class Meta:
        app_label = 'field_encryption'
        db_table = 'test_thread'


def stored_document(model, pk, field='document'):
    """Read the document as persisted, without running post_init."""
    return model.objects.filter(pk=pk).values_list(field, flat=True).get()


class EncryptedDocumentTests(TestCase):
    """Test the save and load hooks."""

    def setUp(self):
        self.post = EncryptedPost(
            title='some text',
            document={
                'message': 'hide me!',
                'metadata': {'nested': 'some stuff to encrypt'},
                'tags': [1, 2, 3],
                'author': 'some name',
            },
        )
        self.post.save()

    def test_save_encrypts_document(self):
        """Test the instance and stored document hold ciphertext after save."""
        document = self.post.document

        self.assertEqual(len(document['message'].split(':')), 2)
        self.assertIs(document['__enc_message'], True)
        self.assertNotIn('metadata', document)
        self.assertIs(document['__enc_metadata'], True)
        self.assertTrue(document['__enc_metadata_d'])
        self.assertNotIn('tags', document)
        self.assertEqual(document['author'], 'some name')
        self.assertEqual(self.post.title, 'some text')

        stored = stored_document(EncryptedPost, self.post.pk)
        self.assertEqual(stored, document)

    def test_load_decrypts_document(self):
        found = EncryptedPost.objects.get(pk=self.post.pk)

        self.assertEqual(found.document['message'], 'hide me!')
        self.assertIs(found.document['__enc_message'], False)
        self.assertEqual(found.document['metadata'], {'nested': 'some stuff to encrypt'})
        self.assertEqual(found.document['__enc_metadata_d'], '')
        self.assertEqual(found.document['tags'], [1, 2, 3])
        self.assertEqual(found.document['author'], 'some name')

    def test_queryset_iteration_decrypts(self):
        EncryptedPost.objects.create(title='second', document={'message': 'another'})

        messages = sorted(post.document['message'] for post in EncryptedPost.objects.all())
        self.assertEqual(messages, ['another', 'hide me!'])

    def test_resave_does_not_double_encrypt(self):
        """Saving an encrypted instance again keeps the same ciphertext."""
        ciphertext = self.post.document['message']
        self.post.title = 'something else'
        self.post.save()

        self.assertEqual(self.post.document['message'], ciphertext)
        found = EncryptedPost.objects.get(pk=self.post.pk)
        self.assertEqual(found.document['message'], 'hide me!')
        self.assertEqual(found.title, 'something else')

    def test_modify_loaded_instance(self):
        found = EncryptedPost.objects.get(pk=self.post.pk)
        found.document['message'] = 'changed'
        found.save()

        stored = stored_document(EncryptedPost, self.post.pk)
        self.assertIs(stored['__enc_message'], True)
        self.assertNotEqual(stored['message'], 'changed')
        self.assertEqual(EncryptedPost.objects.get(pk=self.post.pk).document['message'], 'changed')

    def test_deferred_document(self):
        """Loading without the document leaves it to be fetched later."""
        found = EncryptedPost.objects.only('title').get(pk=self.post.pk)

        self.assertEqual(found.title, 'some text')
        # Deferred fields are loaded through a fresh instance
        self.assertEqual(found.document['message'], 'hide me!')

    def test_strict_load_failure(self):
        EncryptedPost.objects.filter(pk=self.post.pk).update(
            document={'message': 'deadbeef:00', '__enc_message': True}
        )

        with self.assertRaises(DecryptionError):
            EncryptedPost.objects.get(pk=self.post.pk)

    def test_bound_helpers(self):
        """Test the per-instance encrypt, decrypt and strip helpers."""
        helper = self.post.encryption
        self.assertIsInstance(helper, BoundFieldEncryption)

        helper.decrypt()
        self.assertEqual(self.post.document['message'], 'hide me!')
        self.assertIs(self.post.document['__enc_message'], False)

        helper.encrypt()
        self.assertIs(self.post.document['__enc_message'], True)

        helper.decrypt()
        helper.strip_markers()
        self.assertNotIn('__enc_message', self.post.document)
        self.assertNotIn('__enc_metadata_d', self.post.document)
        self.assertEqual(self.post.document['metadata'], {'nested': 'some stuff to encrypt'})

    def test_class_access_returns_field_encryption(self):
        self.assertIsInstance(EncryptedPost.encryption, FieldEncryption)
        self.assertEqual(EncryptedPost.encryption.model, EncryptedPost)
        self.assertEqual(EncryptedPost.encryption.name, 'encryption')


class DocumentUpdateTests(TestCase):
    """Test the encrypted partial update hook."""

    def setUp(self):
        self.post = EncryptedPost.objects.create(
            title='some text',
            document={'message': 'hide me!', 'author': 'some name'},
        )

    def test_update_encrypts_string_fields(self):
        updated = EncryptedPost.encryption.update(
            EncryptedPost.objects.filter(pk=self.post.pk),
            {'message': 'updated message', 'author': 'new name'},
        )

        self.assertEqual(updated, 1)
        stored = stored_document(EncryptedPost, self.post.pk)
        self.assertIs(stored['__enc_message'], True)
        self.assertEqual(len(stored['message'].split(':')), 2)
        self.assertEqual(stored['author'], 'new name')

        found = EncryptedPost.objects.get(pk=self.post.pk)
        self.assertEqual(found.document['message'], 'updated message')

    def test_update_encrypts_structured_fields(self):
        EncryptedPost.encryption.update(
            EncryptedPost.objects.filter(pk=self.post.pk),
            {'metadata': {'nested': 'value'}, 'tags': ['a', 'b']},
        )

        stored = stored_document(EncryptedPost, self.post.pk)
        self.assertNotIn('metadata', stored)
        self.assertIs(stored['__enc_metadata'], True)
        self.assertTrue(stored['__enc_tags_d'])

        found = EncryptedPost.objects.get(pk=self.post.pk)
        self.assertEqual(found.document['metadata'], {'nested': 'value'})
        self.assertEqual(found.document['tags'], ['a', 'b'])
        self.assertEqual(found.document['message'], 'hide me!')

    def test_update_replaces_structured_with_string(self):
        EncryptedPost.encryption.update(EncryptedPost.objects.filter(pk=self.post.pk), {'metadata': {'a': 1}})
        EncryptedPost.encryption.update(EncryptedPost.objects.filter(pk=self.post.pk), {'metadata': 'plain'})

        stored = stored_document(EncryptedPost, self.post.pk)
        self.assertNotIn('__enc_metadata_d', stored)

        found = EncryptedPost.objects.get(pk=self.post.pk)
        self.assertEqual(found.document['metadata'], 'plain')

    def test_update_multiple_rows(self):
        EncryptedPost.objects.create(title='other', document={})

        updated = EncryptedPost.encryption.update(EncryptedPost.objects.all(), {'message': 'same for all'})

        self.assertEqual(updated, 2)
        for post in EncryptedPost.objects.all():
            self.assertEqual(post.document['message'], 'same for all')


class SearchableDocumentTests(TestCase):
    """Test equality search on values encrypted with a fixed salt."""

    def test_search_by_encrypted_value(self):
        contact = SearchableContact.objects.create(payload={'email': 'someone@example.com'})

        key = derive_key('some secret key')
        ciphertext = encrypt('someone@example.com', key, lambda k: k[:16])

        found = SearchableContact.objects.get(payload__email=ciphertext)
        self.assertEqual(found.pk, contact.pk)
        self.assertEqual(found.payload['email'], 'someone@example.com')


class NestedDocumentTests(TestCase):
    """Test dotted fields in sub-documents and lists of sub-documents."""

    def setUp(self):
        self.thread = Thread.objects.create(document={
            'author': {'name': 'some name', 'password': 'hunter2'},
            'replies': [{'body': 'first reply'}, {'body': 'second reply'}],
        })

    def test_save_encrypts_sub_documents(self):
        stored = stored_document(Thread, self.thread.pk)

        author = stored['author']
        self.assertEqual(author['name'], 'some name')
        self.assertEqual(len(author['password'].split(':')), 2)
        self.assertIs(author['__enc_password'], True)
        for reply in stored['replies']:
            self.assertEqual(len(reply['body'].split(':')), 2)
            self.assertIs(reply['__enc_body'], True)
        self.assertNotIn('__enc_author', stored)

    def test_load_decrypts_sub_documents(self):
        found = Thread.objects.get(pk=self.thread.pk)

        self.assertEqual(found.document['author']['password'], 'hunter2')
        self.assertIs(found.document['author']['__enc_password'], False)
        self.assertEqual([reply['body'] for reply in found.document['replies']], ['first reply', 'second reply'])

    def test_update_replaces_sub_document(self):
        Thread.encryption.update(
            Thread.objects.filter(pk=self.thread.pk),
            {'author': {'name': 'other name', 'password': 'changed'}},
        )

        stored = stored_document(Thread, self.thread.pk)
        self.assertIs(stored['author']['__enc_password'], True)
        self.assertNotEqual(stored['author']['password'], 'changed')

        found = Thread.objects.get(pk=self.thread.pk)
        self.assertEqual(found.document['author']['password'], 'changed')
        self.assertEqual(found.document['replies'][0]['body'], 'first reply')


class RegistrationTests(TestCase):
    """Test registration time validation."""

    def test_abstract_model_rejected(self):
        with self.assertRaises(EncryptionConfigurationError):
            class AbstractDocument(models.Model):
                document = models.JSONField(default=dict)

                encryption = FieldEncryption(fields=['a'], secret='letsdothis')

                class Meta:
                    abstract = True
                    app_label = 'field_encryption'
