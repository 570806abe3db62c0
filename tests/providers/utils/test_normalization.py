import unittest

from chatcore.common.models import Attachment, ChatMessage
from chatcore.providers.utils.normalization import MessageNormalizer


def image(url="https://files.test/cat.png"):
    return Attachment(
        id="att-1",
        file_name="cat.png",
        file_type="image",
        file_size=1024,
        mime_type="image/png",
        url=url,
    )


def document():
    return Attachment(
        id="att-2",
        file_name="report.pdf",
        file_type="document",
        file_size=2048,
        mime_type="application/pdf",
        url="https://files.test/report.pdf",
    )


class TestMessageNormalizer(unittest.TestCase):
    def test_merge_contents_strings(self):
        res = MessageNormalizer._merge_contents("Hello", "World")
        self.assertEqual(res, "Hello\nWorld")

    def test_merge_contents_mixed(self):
        res = MessageNormalizer._merge_contents("Hello", [{"type": "image_url", "image_url": {"url": "..."}}])
        self.assertEqual(len(res), 2)
        self.assertEqual(res[0]["text"], "Hello")
        self.assertEqual(res[1]["type"], "image_url")

    def test_merge_contents_adjacent_text_parts(self):
        list_a = [{"type": "text", "text": "Part A"}]
        list_b = [{"type": "text", "text": "Part B"}]
        res = MessageNormalizer._merge_contents(list_a, list_b)
        self.assertEqual(len(res), 1)
        self.assertEqual(res[0]["text"], "Part A\nPart B")

    def test_normalize_for_openai_merges_same_role(self):
        msgs = [
            {"role": "user", "content": "Hi"},
            {"role": "user", "content": "There"},
            {"role": "assistant", "content": "Hello"},
        ]
        norm = MessageNormalizer.normalize_for_openai(msgs)
        self.assertEqual(len(norm), 2)
        self.assertEqual(norm[0]["content"], "Hi\nThere")
        self.assertEqual(norm[1]["content"], "Hello")

    def test_normalize_for_openai_drops_empty(self):
        msgs = [
            {"role": "user", "content": "Valid"},
            {"role": "assistant", "content": ""},
            {"role": "assistant", "content": "   "},
            {"role": "user", "content": None},
            {"role": "user", "content": "Also Valid"},
        ]
        norm = MessageNormalizer.normalize_for_openai(msgs)
        self.assertEqual(norm, [{"role": "user", "content": "Valid\nAlso Valid"}])

    def test_normalize_does_not_mutate_input(self):
        msgs = [{"role": "user", "content": "a"}, {"role": "user", "content": "b"}]
        MessageNormalizer.normalize_for_openai(msgs)
        self.assertEqual(msgs[0]["content"], "a")

    def test_normalize_for_gemini_lifts_system_and_injects_user(self):
        msgs = [
            {"role": "system", "content": "Sys"},
            {"role": "assistant", "content": "Prefill"},
        ]
        system, history = MessageNormalizer.normalize_for_gemini(msgs)
        self.assertEqual(system, "Sys")
        self.assertEqual([m["role"] for m in history], ["user", "assistant"])
        self.assertEqual(history[0]["content"], "...")

    def test_normalize_for_gemini_consecutive_roles(self):
        msgs = [
            {"role": "user", "content": "1"},
            {"role": "user", "content": "2"},
            {"role": "assistant", "content": "A"},
            {"role": "assistant", "content": "B"},
        ]
        system, history = MessageNormalizer.normalize_for_gemini(msgs)
        self.assertEqual(system, "")
        self.assertEqual(history, [
            {"role": "user", "content": "1\n2"},
            {"role": "assistant", "content": "A\nB"},
        ])

    def test_normalize_for_anthropic_joins_system_messages(self):
        msgs = [
            {"role": "system", "content": "First"},
            {"role": "user", "content": "Hi"},
            {"role": "system", "content": "Second"},
        ]
        system, history = MessageNormalizer.normalize_for_anthropic(msgs)
        self.assertEqual(system, "First\n\nSecond")
        self.assertEqual(history, [{"role": "user", "content": "Hi"}])

    def test_render_openai_image_attachment(self):
        msgs = [ChatMessage(role="user", content="What is this?", attachments=[image(), document()])]
        rendered = MessageNormalizer.render_openai(msgs)
        parts = rendered[0]["content"]
        self.assertEqual(parts[0], {"type": "text", "text": "What is this?"})
        self.assertEqual(parts[1], {"type": "image_url", "image_url": {"url": "https://files.test/cat.png"}})
        self.assertIn("report.pdf", parts[2]["text"])

    def test_render_anthropic_image_attachment(self):
        msgs = [ChatMessage(role="user", content="Describe", attachments=[image()])]
        rendered = MessageNormalizer.render_anthropic(msgs)
        parts = rendered[0]["content"]
        self.assertEqual(parts[0]["type"], "image")
        self.assertEqual(parts[0]["source"], {"type": "url", "url": "https://files.test/cat.png"})
        self.assertEqual(parts[-1], {"type": "text", "text": "Describe"})

    def test_render_plain_attachment_reference(self):
        msgs = [ChatMessage(role="user", content="See file", attachments=[document()])]
        rendered = MessageNormalizer.render_plain(msgs)
        self.assertEqual(
            rendered[0]["content"],
            "See file\n[Attachment: report.pdf (application/pdf) https://files.test/report.pdf]",
        )

    def test_render_without_attachments_is_plain_text(self):
        msgs = [ChatMessage(role="assistant", content="Hi")]
        self.assertEqual(MessageNormalizer.render_openai(msgs), [{"role": "assistant", "content": "Hi"}])


if __name__ == "__main__":
    unittest.main()
